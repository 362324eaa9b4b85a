#!/usr/bin/env python3
"""Stand-in for systemctl backed by a JSON state file.

Point svcdash at it with:

    FAKE_SYSTEMCTL_STATE=units.json SVCDASH_SYSTEMCTL="python3 test/fake_systemctl.py" svcdash dash

State file: {"units": [{"unit": ..., "load": ..., "active": ..., "sub": ...,
"description": ...}], "denied": [...], "stuck": [...]}. Units listed in
"denied" fail every control command with a polkit-style error; units in
"stuck" accept commands but never change state.
"""

import json
import os
import sys

TRANSITIONS = {
    "start": ("active", "running"),
    "restart": ("active", "running"),
    "reload": ("active", "running"),
    "stop": ("inactive", "dead"),
}


def _load(path):
    with open(path) as f:
        return json.load(f)


def _save(path, state):
    with open(path, "w") as f:
        json.dump(state, f)


def _find(state, name):
    for u in state["units"]:
        if u["unit"] == name:
            return u
    return None


def main(argv):
    path = os.environ.get("FAKE_SYSTEMCTL_STATE", "units.json")
    state = _load(path)
    flags = [a for a in argv if a.startswith("-")]
    words = [a for a in argv if not a.startswith("-")]
    if not words:
        print("systemctl: missing verb", file=sys.stderr)
        return 1
    verb, args = words[0], words[1:]

    if verb == "list-units":
        if "--output=json" in flags:
            print(json.dumps(state["units"]))
        else:
            for u in state["units"]:
                print(f"{u['unit']} {u['load']} {u['active']} {u['sub']} {u.get('description', '')}".rstrip())
        return 0

    if verb == "show":
        u = _find(state, args[0]) if args else None
        if u is None:
            print(f"Id={args[0] if args else ''}\nLoadState=not-found\nActiveState=inactive\nSubState=dead\nMainPID=0")
            return 0
        pid = 4242 if u["sub"] == "running" else 0
        print(f"Id={u['unit']}")
        print(f"Description={u.get('description', '')}")
        print(f"LoadState={u['load']}")
        print(f"ActiveState={u['active']}")
        print(f"SubState={u['sub']}")
        print(f"MainPID={pid}")
        print("UnitFileState=enabled")
        return 0

    if verb in TRANSITIONS:
        name = args[0] if args else ""
        u = _find(state, name)
        if u is None:
            print(f"Failed to {verb} {name}: Unit {name} not found.", file=sys.stderr)
            return 5
        if name in state.get("denied", []):
            print(
                f"Failed to {verb} {name}: Access denied\n"
                "See system logs and 'systemctl status' for details.",
                file=sys.stderr,
            )
            return 4
        if name not in state.get("stuck", []):
            u["active"], u["sub"] = TRANSITIONS[verb]
            _save(path, state)
        return 0

    print(f"Unknown command verb {verb}.", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
