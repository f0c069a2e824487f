from pathlib import Path

# 描述子维度：InsightFace buffalo_l 识别头输出 512 维
DESCRIPTOR_LENGTH = 512

# 欧氏距离阈值（L2 归一化后）：d <= 1.0 等价于 cos >= 0.5
MATCH_THRESHOLD = 1.0
# 两个不同选民的最近距离差小于该值视为歧义 -> NoMatch
TIE_EPSILON = 1e-6

# 每位选民最多保留的描述子数量
MAX_DESCRIPTORS_PER_VOTER = 5

# 人脸检测置信度阈值（低于该值的检测框不计入“恰好一张人脸”）
DET_THRESHOLD = 0.60
DET_SIZE = 640
RECOGNITION_MODEL = "buffalo_l"

# 抽帧识别间隔（秒），不是逐帧识别
PROBE_INTERVAL_SECONDS = 2.0

DATA_DIR = Path("data") / "kiosk"
GALLERY_FILENAME = "gallery_descriptors.pkl"
LEDGER_FILENAME = "ledger.json"

DEFAULT_CANDIDATES = [
    {"id": "C1", "name": "Jane Smith", "party": "Progressive Party"},
    {"id": "C2", "name": "John Doe", "party": "Conservative Party"},
    {"id": "C3", "name": "Alex Johnson", "party": "Independent"},
]

# 常见系统字体候选（macOS/Windows/Linux），预览窗口里选民姓名可能含非 ASCII 字符
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/Library/Fonts/Arial Unicode.ttf",
    # Windows
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\arialuni.ttf",
    # Linux：CJK 字体放在前面，否则会优先命中 DejaVuSans
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]
