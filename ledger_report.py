"""打印账本统计：投票人数与各候选人得票。"""

from __future__ import annotations

import argparse
import json

from pathlib import Path

from votekiosk import config
from votekiosk.utils.log import get_logger
from votekiosk.utils.serializer import build_report
from votekiosk.vote.candidates import CandidateRegistry
from votekiosk.vote.ledger import LedgerConfig, VoterLedger

logger = get_logger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="账本统计：投票人数与得票")
    parser.add_argument("--data-dir", "-d", default=str(config.DATA_DIR), help="账本存储目录")
    parser.add_argument("--ballot", "-b", default=None, help="候选人 JSON 文件，默认内置名单")
    parser.add_argument("--output-json", "-j", default=None, help="输出 JSON 路径（默认打印到终端）")
    args = parser.parse_args()

    candidates = CandidateRegistry.from_json(Path(args.ballot)) if args.ballot else CandidateRegistry.default()
    ledger = VoterLedger(LedgerConfig(data_dir=Path(args.data_dir)), candidates)
    if not ledger.load():
        logger.warning(f"未找到账本: {ledger.path}")

    report = build_report(ledger, candidates)
    text = json.dumps(report, ensure_ascii=False, indent=2)
    if args.output_json:
        Path(args.output_json).write_text(text, encoding="utf-8")
        logger.info(f"统计结果已保存至: {args.output_json}")
    else:
        print(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
