#!/usr/bin/env python3
import json
import sys


def main() -> int:
    payload = json.load(sys.stdin)
    domains = payload.get("domains", []) or []
    if "fail" in domains:
        return 3
    if "garbage" in domains:
        sys.stdout.write("not json")
        return 0
    response = (
        "META_INVARIANT: Every persistent structure must balance opposing flows against "
        "bounded capacity\n"
        "PREDICTED_DOMAIN: cosmology\n"
        f"PREDICTION: Derived from {len(domains)} domains\n"
        "REASONING: echo"
    )
    sys.stdout.write(json.dumps({"response": response}, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
