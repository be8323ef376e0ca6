#!/usr/bin/env python3
"""
Validation script for org-link.

Checks that dependencies are installed, the package modules import, and the
settings and credential files (if present) can be read.
"""

import sys
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
        ("cryptography", "cryptography"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "org_link.config",
        "org_link.config_store",
        "org_link.directory",
        "org_link.organisation",
        "org_link.workflow",
        "org_link.main",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_configuration(config_path=None, credentials_path=None):
    """Validate the settings file and the credential file."""
    print("\n=== Configuration Validation ===")

    from org_link.config import load_config, validate_ldap_settings
    from org_link.config_store import ConfigStore
    from org_link.errors import OrgLinkError, NotFound

    all_ok = True
    try:
        settings = load_config(config_path)
        print("  ✓ Settings loaded")
        validate_ldap_settings(settings['ldap'])
        print("  ✓ Directory settings complete")
    except OrgLinkError as e:
        print(f"  ✗ Settings invalid: {e}")
        all_ok = False

    store = ConfigStore(credentials_path)
    try:
        configuration = store.load()
        print(f"  ✓ Credential file valid for organisation '{configuration.organisation_id}'")
    except NotFound:
        print(f"  - No credential file at {store.path} (run: org-link config init)")
    except OrgLinkError as e:
        print(f"  ✗ Credential file invalid: {e}")
        all_ok = False

    return all_ok


def main():
    """Run all validations."""
    print("org-link - Installation Validation")
    print("=" * 50)

    dependencies_ok = validate_dependencies()
    modules_ok = validate_core_modules()
    config_ok = validate_configuration(*sys.argv[1:3]) if dependencies_ok and modules_ok else False

    print("\n=== Summary ===")
    if dependencies_ok and modules_ok and config_ok:
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Store the API token and organisation: org-link config init")
        print("  2. List members: org-link list")
        print("  3. Link a user: org-link add --internal-id jdoe --external-id jdoe-gh")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
