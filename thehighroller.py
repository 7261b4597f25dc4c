# -------
# HighRoller casino floor: websocket server entry point
# -------

import highroller
import asyncio
import sys

def start():
    try:
        if highroller.initialize():
            asyncio.run(highroller.serve())
        else:
            print("❌ HighRoller failed to initialize (see logs for details).")
            sys.exit(1)
    except KeyboardInterrupt:
        print("\n🎰 HighRoller gracefully stopped by user.")
    except Exception as e:
        print(f"💥 Unhandled startup exception: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

if __name__ == "__main__":
    start()
