#!/usr/bin/env python
"""
Main entry point for gexwatch components

Usage:
    python run.py <module> [args...]

Examples:
    python run.py init-db
    python run.py client --symbol SPY
    python run.py collect                       # Scheduled collection (foreground)
    python run.py collect --once --force        # One cycle, even outside market hours
    python run.py scan --sort zscore_abs_desc
    python run.py gex --symbol SPY
    python run.py config
"""
import sys

def print_usage():
    """Print usage information"""
    print(__doc__)
    print("\nAvailable modules:")
    print("  init-db       - Create database tables")
    print("  client        - Test Tradier API client")
    print("  collect       - Run the GEX collection engine")
    print("  scan          - Print GEX changes and anomaly scores")
    print("  gex           - Print combined GEX and gamma flip for a symbol")
    print("  config        - Display current configuration")
    print("\nFor module-specific help, run:")
    print("  python run.py <module> --help")

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    module = sys.argv[1].lower()

    # Remove the module name from sys.argv so the module sees only its args
    sys.argv = [sys.argv[0]] + sys.argv[2:]

    try:
        if module == "init-db":
            from gexwatch.database.schema import main
            main()

        elif module == "client":
            from gexwatch.ingestion.tradier_client import main
            main()

        elif module == "collect":
            print("\n" + "="*80)
            print("RUNNING GEX COLLECTION ENGINE")
            print("="*80)
            print("Note: Cycles only run during regular market hours.")
            print("      Use --once --force for a single off-hours cycle.")
            print("="*80 + "\n")
            from gexwatch.ingestion.collection_engine import main
            main()

        elif module == "scan":
            from gexwatch.analytics.scanner import main
            main()

        elif module == "gex":
            from gexwatch.analytics.report import main
            main()

        elif module == "config":
            from gexwatch.config import print_config
            print_config()

        elif module in ["help", "-h", "--help"]:
            print_usage()

        else:
            print(f"❌ Unknown module: {module}")
            print_usage()
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user")
        sys.exit(0)

    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
