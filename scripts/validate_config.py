#!/usr/bin/env python3
"""Configuration validation script."""

import argparse
import sys
from dataclasses import asdict
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from savings_app.config.loader import ConfigLoader, build_config
from savings_app.config.validation import ConfigValidator


def main():
    """Main validation function."""
    parser = argparse.ArgumentParser(description="Validate relayer configuration")
    parser.add_argument("--config-dir", type=Path, default=None,
                        help="Directory holding the YAML file (default: ./config)")
    parser.add_argument("--file", default="relayer.yaml", help="YAML file name")
    args = parser.parse_args()

    print("🔍 Validating savings relayer configuration...")

    loader = ConfigLoader.create(args.config_dir)
    config_file = loader.config_dir / args.file
    if not config_file.exists():
        print(f"⚠️  {config_file} not found, validating defaults and environment only")

    all_valid = True

    print(f"\n📄 Validating file overrides ({args.file})...")
    try:
        errors = ConfigValidator.validate_config(loader.load_file_config(args.file))
        if errors:
            print(f"❌ Found {len(errors)} validation errors:")
            for error in errors:
                print(f"  • {error.field}: {error.message} (value: {error.value})")
            all_valid = False
        else:
            print("✅ File overrides are valid")
    except Exception as e:
        print(f"❌ Error reading {args.file}: {e}")
        all_valid = False

    print("\n📋 Validating merged configuration (env > file > defaults)...")
    try:
        config = build_config(loader.merge_config(args.file))
        errors = ConfigValidator.validate_config(asdict(config))
        if errors:
            print(f"❌ Found {len(errors)} validation errors:")
            for error in errors:
                print(f"  • {error.field}: {error.message} (value: {error.value})")
            all_valid = False
        else:
            print("✅ Merged configuration is valid")
            print(f"  • ledger: {config.ledger.address} (chain {config.ledger.chain_id})")
            print(f"  • rpc_url: {config.relayer.rpc_url}")
            print(f"  • db_path: {config.store.db_path}")
    except (ValueError, TypeError) as e:
        print(f"❌ Error building merged configuration: {e}")
        all_valid = False

    if all_valid:
        print("\n🎉 All configuration validation passed!")
        sys.exit(0)
    else:
        print("\n❌ Configuration validation failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
