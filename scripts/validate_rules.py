import json, os, sys

from jsonschema import Draft7Validator

from compliance_engine.rule_validator import (
    RULESET_SCHEMA, check_rule_conventions, validate_rule_set, validate_template_placeholders,
)


def check_file(path):
    """Returns (errors, warnings) for one ruleset file."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        return [f"JSON parse error: {e}"], []

    errors = [f"Schema validation error: {e.message}" for e in Draft7Validator(RULESET_SCHEMA).iter_errors(data)]
    errors += validate_rule_set(data)["errors"]

    warnings = []
    rules = data.get("rules") if isinstance(data, dict) else None
    for rule in rules if isinstance(rules, list) else []:
        if not isinstance(rule, dict):
            continue
        warnings += [f"{rule.get('id')}: {i}" for i in validate_template_placeholders(rule)["issues"]]
        warnings += check_rule_conventions(rule)
    return errors, warnings


def main():
    rd = sys.argv[1] if len(sys.argv) > 1 else os.path.join(os.path.dirname(os.path.dirname(__file__)), "rulesets")
    errors = []
    seen = {}
    for fname in sorted(os.listdir(rd)):
        if not fname.endswith(".json"):
            continue
        path = os.path.join(rd, fname)
        errs, warns = check_file(path)
        errors += [(fname, e) for e in errs]
        for w in warns:
            print(f"warning: {fname}: {w}")
        if not errs:
            with open(path, 'r', encoding='utf-8') as f:
                for rule in json.load(f)["rules"]:
                    if rule["id"] in seen:
                        errors.append((fname, f"Duplicate rule id '{rule['id']}' (also in {seen[rule['id']]})"))
                    seen.setdefault(rule["id"], fname)
    if errors:
        print("Validation FAILED")
        for e in errors:
            print(e)
        sys.exit(2)
    print(f"All rule JSON files valid ({len(seen)} rules).")
    sys.exit(0)

if __name__ == '__main__':
    main()
