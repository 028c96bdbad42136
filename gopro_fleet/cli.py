#!/usr/bin/env python3
"""Control every configured GoPro over COHN at once."""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from dotenv import load_dotenv

from gopro_fleet import __version__
from gopro_fleet.camera_manager import CameraManager, FleetResult
from gopro_fleet.cohn_manager import DEFAULT_CONFIG_FILE, COHNManager
from gopro_fleet.download_manager import DEFAULT_DOWNLOAD_DIR, DownloadManager, TransferReport
from gopro_fleet.errors import ConfigInvalid
from gopro_fleet.logging_utils import setup_logging
from gopro_fleet.notification_manager import NotificationConfig, NotificationManager
from gopro_fleet.s3_uploader import S3Config, S3Uploader

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2

UPLOAD_COMMANDS = ("upload",)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="gopro-fleet", description=__doc__)
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument(
        '-c', '--config',
        type=str,
        default=None,
        help=f"COHN camera configuration file (default: $GOPRO_COHN_CONFIG or {DEFAULT_CONFIG_FILE})"
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help="Enable verbose logging"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("start", help="Start capture on all cameras")
    sub.add_parser("stop", help="Stop capture on all cameras")
    sub.add_parser("list", help="List files on all cameras")
    sub.add_parser("status", help="Show status and settings of all cameras")
    sub.add_parser("info", help="Show model and firmware info of all cameras")
    sub.add_parser("keep-alive", help="Keep all cameras awake")

    setting = sub.add_parser("set-setting", help="Apply one setting on all cameras")
    setting.add_argument('setting_id', type=int, help="GoPro setting ID (e.g. 2 = resolution)")
    setting.add_argument('option', type=int, help="Option value for the setting")

    download = sub.add_parser("download", help="Download all files from all cameras")
    download.add_argument(
        '-o', '--output',
        type=str,
        default=str(DEFAULT_DOWNLOAD_DIR),
        help="Output directory (one sub-directory per camera)"
    )
    download.add_argument('--upload', action='store_true', help="Upload to S3 after a complete download")
    download.add_argument('--cleanup', action='store_true', help="Remove local files after a complete upload")

    upload = sub.add_parser("upload", help="Upload already downloaded files to S3")
    upload.add_argument('-o', '--output', type=str, default=str(DEFAULT_DOWNLOAD_DIR), help="Download directory")
    upload.add_argument('--cleanup', action='store_true', help="Remove local files after a complete upload")

    delete = sub.add_parser("delete", help="Delete ALL files from ALL cameras")
    delete.add_argument('--confirm', action='store_true', help="Skip confirmation prompt")

    cleanup = sub.add_parser("cleanup-local", help="Remove local download directories")
    cleanup.add_argument('-o', '--output', type=str, default=str(DEFAULT_DOWNLOAD_DIR), help="Download directory")
    cleanup.add_argument('--confirm', action='store_true', help="Skip confirmation prompt")

    args = parser.parse_args(argv)
    if args.command == "download" and args.cleanup and not args.upload:
        parser.error("--cleanup needs --upload: local files are only removed after they are archived")
    return args


def print_result(result: FleetResult):
    for outcome in result.outcomes:
        if outcome.success:
            print(f"✓ {outcome.ip_address}: Success")
        else:
            print(f"✗ {outcome.ip_address}: Failed - {outcome.error}")
    print("")


def print_listing(result: FleetResult):
    for outcome in result.outcomes:
        print(f"📷 Camera: {outcome.ip_address}")
        if not outcome.success:
            print(f"  ✗ Failed: {outcome.error}\n")
            continue
        files = outcome.result or []
        if not files:
            print("  No files found\n")
            continue
        print(f"  Found {len(files)} file(s):")
        for index, media in enumerate(files, 1):
            # Grouped captures only report a size on their first member
            if media.size > 0:
                label = " - whole group" if media.is_group_item else ""
                print(f"    {index}. {media.name} ({media.size / 1024 / 1024:.2f} MB{label})")
            else:
                print(f"    {index}. {media.name}")
        print("")


def print_status(result: FleetResult):
    for outcome in result.outcomes:
        print(f"📷 Camera: {outcome.ip_address}")
        if not outcome.success:
            print(f"  ✗ Failed: {outcome.error}\n")
            continue
        print("\n=== Camera Status ===")
        print(json.dumps(outcome.result["health"], indent=2))
        print("\n=== Camera Settings ===")
        print(json.dumps(outcome.result["settings"], indent=2))
        print("")


def print_info(result: FleetResult):
    for outcome in result.outcomes:
        print(f"📷 Camera: {outcome.ip_address}")
        if not outcome.success:
            print(f"  ✗ Failed: {outcome.error}\n")
            continue
        print(json.dumps(outcome.result, indent=2))
        print("")


def print_report(report: TransferReport):
    print_result(report.result)
    print(
        f"Files downloaded: {report.files_downloaded} | uploaded: {report.files_uploaded} | "
        f"cameras OK: {report.devices_succeeded}/{len(report.result.outcomes)}\n"
    )


async def run_command(args: argparse.Namespace, camera_manager: CameraManager,
                      download_manager: Optional[DownloadManager] = None) -> int:
    """Run one command against the fleet. Returns the process exit code."""
    command = args.command

    if command in ("delete", "cleanup-local") and not args.confirm:
        what = "ALL files from ALL cameras" if command == "delete" else f"local files under {args.output}"
        print(f"\n⚠️  WARNING: This will delete {what}!")
        print(f"Cameras: {', '.join(c['ip_address'] for c in camera_manager.list_cameras())}")
        print(f"\nTo confirm, run with --confirm flag:\ngopro-fleet {command} --confirm\n")
        return EXIT_OK

    if command == "start":
        result = await camera_manager.start_all()
        print_result(result)
    elif command == "stop":
        result = await camera_manager.stop_all()
        print_result(result)
    elif command == "list":
        result = await camera_manager.list_media_all()
        print_listing(result)
    elif command == "status":
        result = await camera_manager.status_all()
        print_status(result)
    elif command == "info":
        result = await camera_manager.info_all()
        print_info(result)
    elif command == "keep-alive":
        result = await camera_manager.keep_alive_all()
        print_result(result)
    elif command == "set-setting":
        result = await camera_manager.set_setting_all(args.setting_id, args.option)
        print_result(result)
    elif command == "delete":
        result = await camera_manager.delete_all_media()
        print_result(result)
    elif command == "download":
        result = await download_manager.download_all(camera_manager, upload=args.upload, cleanup=args.cleanup)
        print_report(result)
    elif command == "upload":
        result = await download_manager.upload_all(camera_manager, cleanup=args.cleanup)
        print_report(result)
    elif command == "cleanup-local":
        result = await download_manager.cleanup_local_all(camera_manager)
        print_result(result)
    else:
        raise ValueError(f"Unknown command: {command}")

    return EXIT_OK if result.success else EXIT_FAILED


async def _main(args: argparse.Namespace) -> int:
    # Everything that can be misconfigured is checked before a camera is contacted
    cohn_manager = COHNManager(args.config)
    notifier = NotificationManager(NotificationConfig.from_env())
    uploader = None
    if args.command in UPLOAD_COMMANDS or getattr(args, "upload", False):
        uploader = S3Uploader(S3Config.from_env())
    download_manager = DownloadManager(getattr(args, "output", None), uploader=uploader)

    camera_manager = CameraManager.from_config(cohn_manager, notifier=notifier)
    try:
        return await run_command(args, camera_manager, download_manager)
    finally:
        await camera_manager.close_all()


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        return asyncio.run(_main(args))
    except ConfigInvalid as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
