"""
Extension harness — runs one entry point of an extension script.

Executed in a child interpreter (``python -I harness.py SCRIPT ENTRY``),
never imported by the engine. Standard library only.

Protocol:
    stdin   one JSON object: the parameter mapping
    stdout  one JSON line:   {"result": <value>} or {"error": str, "type": str}

Anything the script itself prints goes to stderr so it cannot corrupt
the result line. The entry point is called as ``fn(params, host)`` or
``fn(params)`` depending on how many arguments it takes.
"""

import importlib.util
import inspect
import json
import os
import shlex
import subprocess
import sys


class Host:
    """The capabilities an extension may use."""

    def path_exists(self, path):
        return os.path.exists(os.path.expanduser(path))

    def run(self, cmd, timeout=60):
        """Run a command (argv list or string, never through a shell)."""
        argv = shlex.split(cmd) if isinstance(cmd, str) else list(cmd)
        proc = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
        return {"returncode": proc.returncode, "stdout": proc.stdout, "stderr": proc.stderr}


def _load(script_path):
    spec = importlib.util.spec_from_file_location("sapphire_extension", script_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load {script_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _call(fn, params, host):
    try:
        positional = [
            p for p in inspect.signature(fn).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        ]
    except (TypeError, ValueError):
        positional = [None, None]
    if len(positional) >= 2:
        return fn(params, host)
    return fn(params)


def main(argv):
    result_stream = sys.stdout
    sys.stdout = sys.stderr

    if len(argv) != 3:
        message = {"error": "usage: harness.py SCRIPT ENTRY", "type": "UsageError"}
        result_stream.write(json.dumps(message) + "\n")
        return 2

    script_path, entry = argv[1], argv[2]
    try:
        params = json.loads(sys.stdin.read() or "{}")
        module = _load(script_path)
        fn = getattr(module, entry, None)
        if not callable(fn):
            raise AttributeError(f"{script_path} has no entry point {entry!r}")
        value = _call(fn, params, Host())
        payload = {"result": value if isinstance(value, (bool, int, float, str, type(None))) else repr(value)}
    except BaseException as e:  # noqa: BLE001
        payload = {"error": str(e) or e.__class__.__name__, "type": e.__class__.__name__}

    result_stream.write(json.dumps(payload) + "\n")
    result_stream.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
