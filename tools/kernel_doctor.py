from __future__ import annotations

import argparse
import json
import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from brepbridge.kernel import build_default_kernel, collect_kernel_diagnostics
from brepbridge.logging import configure_logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Geometry kernel doctor check")
    parser.add_argument("--json", default="", help="Optional path to save JSON report")
    parser.add_argument("--strict", action="store_true", help="Fail when only the null kernel is available")
    parser.add_argument("--log-file", default="", help="Log file (default: ~/.brepbridge/logs/brepbridge.log)")
    parser.add_argument("--log-level", default=None, help="Log level name (default: BREP_LOG_LEVEL or INFO)")
    parser.add_argument("--capabilities", action="store_true", help="Also print the selected kernel's capabilities")
    args = parser.parse_args(argv)

    logger = configure_logging(log_file=args.log_file or None, level=args.log_level)
    report = collect_kernel_diagnostics(logger=logger).to_dict()
    print(f"[KERNEL-DOCTOR] {report.get('summary', '')}")

    kernel, _ = build_default_kernel(logger=logger)
    try:
        caps = kernel.capabilities.to_dict()
    finally:
        kernel.close()
    report["selected"] = caps
    print(f"[KERNEL-DOCTOR] selected provider: {caps.get('provider', '')}")
    if args.capabilities:
        print(json.dumps(caps, ensure_ascii=False, indent=2))

    if args.json:
        out = os.path.abspath(args.json)
        os.makedirs(os.path.dirname(out) or ".", exist_ok=True)
        with open(out, "w", encoding="utf-8", newline="\n") as f:
            json.dump(report, f, ensure_ascii=False, indent=2)
        print(f"[KERNEL-DOCTOR] report saved: {out}")

    if args.strict and caps.get("provider") == "null":
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
