"""python -m archpkg 入口"""

from archpkg.cli import main

if __name__ == "__main__":
    main()
