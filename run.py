import os
import sys

try:
    from famtree import create_app
except (ModuleNotFoundError, ImportError) as e:
    print("=" * 70)
    print("ERROR: Required dependencies are not installed.")
    print("=" * 70)

    module_name = getattr(e, "name", None) or "unknown"
    print(f"\nMissing module: {module_name}")
    print("\nInstall the project first:")
    print("  pip install -e .")
    print("=" * 70)
    sys.exit(1)

app = create_app()

if __name__ == "__main__":
    host = os.environ.get("APP_BIND_HOST", "127.0.0.1")
    port = int(os.environ.get("APP_PORT", "3001"))
    debug = os.environ.get("APP_DEBUG", "0") == "1"

    app.run(host=host, port=port, debug=debug)
