"""
CLI Module

Architectural Intent:
- Command-line interface for nimbus
- Delegates to the provisioning use case via the composition root
- Supports --verbose/--debug flags for log level control
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
import traceback

from nimbus.application.dtos.provisioning_dtos import (
    ProvisionRequest,
    ProvisionResponse,
    parse_pairs,
)
from nimbus.composition_root import create_container
from nimbus.domain.errors import ProvisioningError
from nimbus.domain.value_objects.image import DeviceMapping, Image, ROOT_MOUNT_POINT
from nimbus.infrastructure.adapters.simulated_adapter import SimulatedControlPlane
from nimbus.infrastructure.config import load_config
from nimbus.infrastructure.logging import configure_logging


def _simulated_image(image_id: str, mount_spec: dict[str, str]) -> Image:
    """An image declaring exactly the requested mount points."""
    mappings = [DeviceMapping(ROOT_MOUNT_POINT, "/dev/sda1")]
    for index, mount_point in enumerate(sorted(mount_spec)):
        mappings.append(DeviceMapping(mount_point, f"/dev/sd{chr(ord('b') + index)}"))
    return Image(id=image_id, device_mappings=tuple(mappings))


def _print_response(response: ProvisionResponse, as_json: bool) -> None:
    if as_json:
        print(json.dumps(dataclasses.asdict(response), indent=2))
        return
    if response.success:
        print(f"[+] {response.message}")
        for key, value in (response.instance or {}).items():
            print(f"    {key}: {value}")
        return
    print(f"[-] Provisioning failed at step '{response.failed_step}': {response.message}")
    if response.compensation_attempted:
        print(f"[*] Cleanup attempted for: {', '.join(response.compensation_attempted)}")
        for failure in response.compensation_failures:
            print(f"[!] {failure}")
        if response.compensation_failures:
            print("[!] Verify these instances were removed before retrying.")
    elif not response.remote_resource_created:
        print("[*] No remote resources were created; safe to retry.")


async def async_main():
    parser = argparse.ArgumentParser(
        description="nimbus: provision cloud instances without leaving orphans behind"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug output with tracebacks"
    )
    parser.add_argument("--config", "-c", help="Path to nimbus.json config file")
    parser.add_argument(
        "--log-json", action="store_true", help="Emit log records as JSON lines"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    provision_parser = subparsers.add_parser(
        "provision", help="Launch an instance, attach volumes and tag it"
    )
    provision_parser.add_argument("name", help="Display name for the instance")
    provision_parser.add_argument(
        "--image", "-i", required=True, help="Image id to launch from"
    )
    provision_parser.add_argument(
        "--mount",
        "-m",
        action="append",
        default=[],
        metavar="MOUNT_POINT=VOLUME_ID",
        help="Bind a volume to a mount point (repeatable)",
    )
    provision_parser.add_argument(
        "--env",
        "-e",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable passed in user data (repeatable)",
    )
    provision_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use the in-memory control plane instead of EC2",
    )
    provision_parser.add_argument(
        "--json", action="store_true", help="Print the result as JSON"
    )

    args = parser.parse_args()

    config = load_config(args.config)

    # Flags override the configured level
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = config.log_level
    try:
        configure_logging(
            level=level, json_format=args.log_json or config.log_format == "json"
        )
    except ValueError as e:
        print(f"[-] Invalid configuration: {e}")
        sys.exit(2)

    verbose = args.verbose or args.debug

    if args.command == "provision":
        try:
            request = ProvisionRequest(
                name=args.name,
                image_id=args.image,
                mount_spec=parse_pairs(args.mount, "mount"),
                env=parse_pairs(args.env, "env"),
            )
        except ValueError as e:
            print(f"[-] Invalid request: {e}")
            sys.exit(2)

        control_plane = None
        if args.simulate or config.provisioning.simulate:
            control_plane = SimulatedControlPlane(
                images=[_simulated_image(request.image_id, request.mount_spec)]
            )
        container = create_container(config, control_plane=control_plane)

        try:
            instance = await container.provision_instance.execute(
                request.name, request.image_id, request.mount_spec, request.env
            )
        except ProvisioningError as e:
            _print_response(ProvisionResponse.from_error(e), args.json)
            if verbose:
                traceback.print_exc()
            sys.exit(1)
        except TimeoutError:
            print("[-] Provisioning timed out; cleanup was attempted for any launched instance.")
            sys.exit(1)

        _print_response(ProvisionResponse.from_instance(instance), args.json)
        return

    parser.print_help()


def main():
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
