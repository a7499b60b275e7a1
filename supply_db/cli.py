# supply_db/cli.py
from __future__ import annotations
import argparse, json, sys
from typing import Any, Dict, List, Optional

from . import diag
from .config import Settings
from .engine.context import StorageContext
from .engine.record import ProductPayload
from .engine.service import ProductService
from .errors import InvalidInput, NotFound, SupplyDbError


def _dump(obj: Dict[str, Any]) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _payload(args: argparse.Namespace) -> ProductPayload:
    return ProductPayload(
        name=args.name,
        origin=args.origin,
        current_location=args.location,
        status=args.status,
        certification=args.certification,
        iot_data=args.iot_data,
    )


def _add_mutable_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--location", required=True, help="当前位置")
    p.add_argument("--status", required=True, help="状态，如 Manufactured / In Transit / Delivered")
    p.add_argument("--certification", default=None, help="认证信息（可选）")
    p.add_argument("--iot-data", dest="iot_data", default=None, help="最新传感器数据（可选）")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="supply-db", description="supply_db 商品记录命令行")
    ap.add_argument("--data", default=None, help="数据文件（默认取 SUPPLY_DB_DATA 或 data/supply.sdb）")
    ap.add_argument("--log", default=None, help="日志文件（默认取 SUPPLY_DB_LOG；不设则不写）")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("create", help="新建商品")
    p.add_argument("--name", required=True)
    p.add_argument("--origin", required=True)
    _add_mutable_args(p)

    p = sub.add_parser("get", help="按 id 查询")
    p.add_argument("id", type=int)

    p = sub.add_parser("update", help="更新位置/状态/认证/传感器数据")
    p.add_argument("id", type=int)
    p.add_argument("--name", default=None, help="仅参与校验，不写入；默认取已存记录")
    p.add_argument("--origin", default=None, help="仅参与校验，不写入；默认取已存记录")
    _add_mutable_args(p)

    p = sub.add_parser("delete", help="按 id 删除")
    p.add_argument("id", type=int)

    sub.add_parser("stats", help="显示存储统计")
    return ap


def run(svc: ProductService, args: argparse.Namespace) -> int:
    if args.cmd == "create":
        _dump(svc.create(_payload(args)).to_dict())
    elif args.cmd == "get":
        _dump(svc.read(args.id).to_dict())
    elif args.cmd == "update":
        if args.name is None or args.origin is None:
            current = svc.read(args.id)
            args.name = current.name if args.name is None else args.name
            args.origin = current.origin if args.origin is None else args.origin
        _dump(svc.update(args.id, _payload(args)).to_dict())
    elif args.cmd == "delete":
        _dump(svc.delete(args.id).to_dict())
    elif args.cmd == "stats":
        _dump(svc.ctx.stats())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env(data_path=args.data, log_path=args.log)
    except SupplyDbError as e:
        print(f"错误 {type(e).__name__}: {e}", file=sys.stderr)
        return 2
    if settings.log_path:
        diag.enable_log(settings.log_path)
    try:
        with StorageContext(settings) as ctx:
            return run(ProductService(ctx), args)
    except (InvalidInput, NotFound) as e:
        print(f"错误 {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except SupplyDbError as e:
        print(f"致命错误 {type(e).__name__}: {e}", file=sys.stderr)
        return 3
    finally:
        if settings.log_path:
            diag.disable_log()


if __name__ == "__main__":
    raise SystemExit(main())
