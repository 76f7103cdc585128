"""全局测试配置：所有测试在测试模式下运行。"""

import os

# 须在导入任何 codguard 模块之前设置，避免应用启动后台任务
os.environ["TESTING"] = "1"
