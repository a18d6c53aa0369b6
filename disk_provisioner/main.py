import argparse
import sys
from pathlib import Path

from disk_provisioner.__version__ import __version__
from disk_provisioner.config.settings import load_settings
from disk_provisioner.domain.models import ProvisioningPlan
from disk_provisioner.logging import LoggerFactory, setup_logging
from disk_provisioner.services.provisioning import (
    ProvisioningOrchestrator,
    select_device,
)
from disk_provisioner.storage.command import CommandExecutor
from disk_provisioner.storage.devices import DeviceCatalog, format_device_label
from disk_provisioner.storage.exceptions import (
    CommandError,
    DependencyError,
    EnumerationError,
    MissingCommandError,
    PreconditionError,
    ProvisioningError,
    ResolutionError,
    UnknownFilesystemError,
)
from disk_provisioner.storage.filesystems import ROOT_FILESYSTEMS, backend_from_name

EXIT_OK = 0
EXIT_UNEXPECTED = 1
# 2 is argparse's usage error
EXIT_PRECONDITION = 3
EXIT_DEPENDENCY = 4
EXIT_ENUMERATION = 5
EXIT_RESOLUTION = 6
EXIT_COMMAND = 7
EXIT_MISSING_COMMAND = 8
EXIT_UNKNOWN_FILESYSTEM = 9
EXIT_NOT_CONFIRMED = 10

EXIT_CODES = {
    PreconditionError: EXIT_PRECONDITION,
    DependencyError: EXIT_DEPENDENCY,
    EnumerationError: EXIT_ENUMERATION,
    ResolutionError: EXIT_RESOLUTION,
    CommandError: EXIT_COMMAND,
    MissingCommandError: EXIT_MISSING_COMMAND,
    UnknownFilesystemError: EXIT_UNKNOWN_FILESYSTEM,
}


def exit_code_for(error: ProvisioningError) -> int:
    for error_type, code in EXIT_CODES.items():
        if isinstance(error, error_type):
            return code
    return EXIT_UNEXPECTED


def _device_path(value: str) -> str:
    if not Path(value).name:
        raise argparse.ArgumentTypeError(f"not a device path: {value!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="disk-provisioner",
        description="Partition and format a disk for an EFI install. ALL DATA ON THE DISK IS DESTROYED.",
    )
    parser.add_argument(
        "-f",
        "--filesystem",
        default="zfs",
        choices=ROOT_FILESYSTEMS,
        help="Filesystem for the root partition (default: zfs)",
    )
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Tear down mounts and pools left by a previous failed run first",
    )
    parser.add_argument(
        "--device",
        type=_device_path,
        help="Device to install to (e.g. /dev/sda); defaults to the largest disk",
    )
    parser.add_argument(
        "--mount",
        action="store_true",
        help="Mount the new root and boot filesystems under the mount root",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List candidate devices and exit",
    )
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Confirm that the selected device may be erased",
    )
    parser.add_argument("--settings", type=Path, help="Path to a settings JSON file")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output (very verbose)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    settings = load_settings(args.settings)
    log.debug(f"Settings: {settings.to_dict()}")

    executor = CommandExecutor(timeout=settings.command_timeout_seconds)

    try:
        catalog = DeviceCatalog(settings.sysfs_root, settings.device_exclude_pattern)
        if args.list_devices:
            for device in catalog.enumerate():
                print(format_device_label(device))
            return EXIT_OK

        backend = backend_from_name(
            args.filesystem,
            executor,
            mount_root=settings.mount_root,
            pool_name=settings.zfs_pool_name,
        )
        device = select_device(catalog, args.device)
        if not args.yes:
            log.error(
                f"Refusing to erase {format_device_label(device)} without --yes"
            )
            return EXIT_NOT_CONFIRMED

        plan = ProvisioningPlan(
            target_device=device,
            filesystem=backend,
            clean_first=args.clean,
            mount=args.mount,
        )
        orchestrator = ProvisioningOrchestrator(executor, catalog=catalog, settings=settings)
        result = orchestrator.run(plan)
    except ProvisioningError as error:
        log.error(f"{type(error).__name__}: {error}")
        return exit_code_for(error)
    except Exception as error:
        log.exception(f"Unexpected error: {type(error).__name__}")
        return EXIT_UNEXPECTED

    log.success(
        f"Provisioned {result.device.device_path}: boot {result.boot_partition.device_path}, "
        f"root {result.root_partition.device_path} ({backend.name})"
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
