import asyncio
import os
import sys

# Run from a checkout without installing the package
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from mina_ai.bot import main

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
