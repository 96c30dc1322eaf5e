"""Gateway 启动入口 -- python -m mobzap.gateway [--port N]

监听地址由 MOBZAP_HOST / MOBZAP_PORT 控制，命令行 --port 优先。
"""

import os
import sys


def main() -> None:
    import uvicorn

    host = os.environ.get("MOBZAP_HOST", "127.0.0.1")
    port = int(os.environ.get("MOBZAP_PORT", "8000"))
    args = sys.argv[1:]
    if args[:1] == ["--port"] and len(args) == 2:
        port = int(args[1])
    elif args:
        print("用法: python -m mobzap.gateway [--port N]")
        sys.exit(1)

    uvicorn.run("mobzap.gateway.main:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
