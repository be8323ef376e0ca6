"""
Command line entry point for org-link.

Loads settings and the credential file once, builds the clients and runs one
command: add, remove, list or config.
"""

import sys
import json
import logging
import argparse
from typing import Any, Dict, List, Optional

from org_link.config import load_config
from org_link.config_store import ConfigStore
from org_link.directory import DirectoryAttributeClient
from org_link.errors import Aborted, NotFound, OrgLinkError
from org_link.logging_setup import setup_logging
from org_link.models import Configuration
from org_link.organisation import OrganisationMembershipClient
from org_link.workflow import LinkageWorkflow, single_identity

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='org-link',
        description='Link directory users to organisation memberships'
    )
    parser.add_argument('--config', '-c', help='Path to settings file (default: config.yaml)')
    parser.add_argument('--credentials', help='Path to credential file')

    subparsers = parser.add_subparsers(dest='command', metavar='command')
    subparsers.required = True

    add_parser = subparsers.add_parser('add', help='Invite a user and store the linkage')
    add_parser.add_argument('--internal-id', required=True, help='Directory account name')
    add_parser.add_argument('--external-id', required=True, help='Organisation username')

    remove_parser = subparsers.add_parser('remove', help='Remove a user from the organisation')
    remove_parser.add_argument('--internal-id', help='Directory account name')
    remove_parser.add_argument('--external-id', help='Organisation username')
    policy = remove_parser.add_mutually_exclusive_group()
    policy.add_argument('--clear-attribute', dest='clear_attribute', action='store_const', const=True,
                        help='Clear the linkage attribute after removal')
    policy.add_argument('--keep-attribute', dest='clear_attribute', action='store_const', const=False,
                        help='Keep the linkage attribute after removal')

    list_parser = subparsers.add_parser('list', help='List organisation members')
    list_parser.add_argument('--json', action='store_true', help='Print members as a JSON array')

    config_parser = subparsers.add_parser('config', help='Show or change the stored credential')
    config_sub = config_parser.add_subparsers(dest='config_command', metavar='action')
    config_sub.required = True
    config_sub.add_parser('show', help='Show the stored organisation and a masked token')
    config_sub.add_parser('init', help='Prompt for the token and organisation')
    set_parser = config_sub.add_parser('set', help='Replace the stored credential')
    set_parser.add_argument('--credential', required=True, help='API token')
    set_parser.add_argument('--org', required=True, help='Organisation identifier')
    set_parser.add_argument('--force', action='store_true', help='Overwrite without asking')

    return parser


def mask_secret(secret: str) -> str:
    """Show only the last four characters of a secret."""
    if len(secret) <= 4:
        return '****'
    return '****' + secret[-4:]


def _is_interactive() -> bool:
    return sys.stdin.isatty()


def _confirm(question: str) -> bool:
    answer = input(f"{question} [y/N]: ").strip().lower()
    return answer in ('y', 'yes')


def load_configuration(store: ConfigStore) -> Configuration:
    """
    Load the credential file, running first-time setup on a terminal.

    Raises:
        NotFound: If no credential file exists and stdin is not a terminal
    """
    try:
        return store.load()
    except NotFound:
        if not _is_interactive():
            raise
        print(f"No configuration found at {store.path}; starting first-time setup.")
        return store.init_interactive()


def run_config_command(args: argparse.Namespace, store: ConfigStore) -> int:
    if args.config_command == 'show':
        configuration = store.load()
        print(f"Credential file: {store.path}")
        print(f"Organisation:    {configuration.organisation_id}")
        print(f"API token:       {mask_secret(configuration.credential)}")
        return 0

    if args.config_command == 'init':
        if store.exists() and not _confirm(f"Overwrite existing configuration at {store.path}?"):
            raise Aborted("Existing configuration kept")
        store.init_interactive()
        print(f"Configuration saved to {store.path}")
        return 0

    confirm = args.force
    if not confirm and store.exists() and _is_interactive():
        confirm = _confirm(f"Overwrite existing configuration at {store.path}?")
    configuration = store.replace(Configuration(credential=args.credential, organisation_id=args.org),
                                  confirm=confirm)
    print(f"Configuration for '{configuration.organisation_id}' saved to {store.path}")
    return 0


def run_workflow_command(args: argparse.Namespace, settings: Dict[str, Any], store: ConfigStore) -> int:
    # reject bad identifiers before touching the credential file or any client
    if args.command == 'remove':
        args.internal_id, args.external_id = single_identity(args.internal_id, args.external_id)

    configuration = load_configuration(store)
    linkage_settings = settings['linkage']

    clear_attribute = linkage_settings['clear_attribute_on_remove']
    if getattr(args, 'clear_attribute', None) is not None:
        clear_attribute = args.clear_attribute

    # remove by external id only touches the directory when clearing
    directory = None
    if args.command == 'add' or (args.command == 'remove' and (args.internal_id or clear_attribute)):
        directory = DirectoryAttributeClient(settings['ldap'])

    organisation = OrganisationMembershipClient(settings['organisation'], configuration.credential)
    workflow = LinkageWorkflow(
        configuration,
        directory,
        organisation,
        clear_attribute_on_remove=clear_attribute,
        enforce_unique_linkage=linkage_settings['enforce_unique_linkage'],
    )

    try:
        if args.command == 'add':
            linkage = workflow.add(args.internal_id, args.external_id)
            state = f" (membership: {linkage.membership_state})" if linkage.membership_state else ''
            print(f"Linked {linkage.internal_id} -> {linkage.external_id}{state}")

        elif args.command == 'remove':
            linkage = workflow.remove(internal_id=args.internal_id, external_id=args.external_id)
            print(f"Removed {linkage.external_id} from {configuration.organisation_id}")

        else:
            members = workflow.list_members()
            if args.json:
                print(json.dumps(members, indent=2))
            else:
                for member in members:
                    print(member)
    finally:
        organisation.close_connection()
        if directory:
            directory.disconnect()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_config(args.config)
        setup_logging(settings['logging'])
        store = ConfigStore(args.credentials)

        if args.command == 'config':
            return run_config_command(args, store)
        return run_workflow_command(args, settings, store)

    except OrgLinkError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return e.exit_code
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
