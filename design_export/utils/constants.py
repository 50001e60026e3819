"""应用常量定义."""

from pathlib import Path

# ===================
# 应用信息
# ===================
APP_NAME = "设计稿渲染与导出服务"
APP_VERSION = "1.0.0"

# ===================
# 路径常量
# ===================
# 应用数据目录
APP_DATA_DIR = Path.home() / ".design-export"

# 任务数据库文件路径
DATABASE_PATH = APP_DATA_DIR / "jobs.db"

# 日志目录
LOG_DIR = APP_DATA_DIR / "logs"

# 导出文件根目录
EXPORT_ROOT = APP_DATA_DIR / "exports"

# ===================
# 画布常量
# ===================
DEFAULT_CANVAS_WIDTH = 1080
DEFAULT_CANVAS_HEIGHT = 1080
MAX_CANVAS_SIZE = 10000

# ===================
# 导出常量
# ===================
# 质量档位 -> 数值质量（ImageMagick -quality）
QUALITY_VALUES = {
    "low": 60,
    "medium": 80,
    "high": 92,
    "ultra": 100,
}

# 格式 -> MIME 类型
MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "webm": "video/webm",
}

# 视频导出默认参数
DEFAULT_VIDEO_DURATION = 5.0  # 秒
DEFAULT_VIDEO_FPS = 30

# 外部转换工具
DEFAULT_RASTERIZER_BINARY = "magick"
DEFAULT_TRANSCODER_BINARY = "ffmpeg"
CONVERSION_TIMEOUT = 120  # 秒
JOB_TIMEOUT = 300  # 秒

# 任务保留时间（小时）
IMAGE_RETENTION_HOURS = 24
VIDEO_RETENTION_HOURS = 72

# 最大重试次数
MAX_RETRIES = 3

# 默认并发 worker 数
DEFAULT_WORKER_COUNT = 2

# 诊断输出保留长度
DIAGNOSTIC_OUTPUT_TAIL = 4000
