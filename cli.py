import argparse
import json
import sys
from pathlib import Path

import yaml

from errors import ValidationError
from model import app_json_schema, default_app_data, validate_app


def resolve_app_file(app_path: str) -> Path:
    path = Path(app_path).resolve()
    if path.suffix in (".yaml", ".yml"):
        return path
    return path / "app.yaml"


def validate_app_file(app_path: str):
    """Returns the resolved file path and a list of error lines (empty when valid)."""
    file_path = resolve_app_file(app_path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as e:
        return file_path, [e.strerror or str(e)]

    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as e:
        return file_path, [str(e)]

    try:
        validate_app(documents[0] if documents else None)
    except ValidationError as e:
        return file_path, [str(issue) for issue in e.issues]
    return file_path, []


def cmd_validate(args) -> int:
    file_path, errors = validate_app_file(args.appPath)
    if errors:
        sys.stderr.write(f"Invalid app config: {file_path}\n")
        for error in errors:
            sys.stderr.write(f"- {error}\n")
        return 1
    sys.stdout.write(f"Valid app config: {file_path}\n")
    return 0


def cmd_init(args) -> int:
    file_path = resolve_app_file(args.targetPath)
    if file_path.exists():
        sys.stderr.write(f"Refusing to overwrite existing file: {file_path}\n")
        return 1

    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(yaml.safe_dump(default_app_data(args.name), sort_keys=False), encoding="utf-8")
    sys.stdout.write(f"Created {file_path}\n")
    return 0


def cmd_schema(args) -> int:
    out_dir = Path(args.outDir)
    out_dir.mkdir(parents=True, exist_ok=True)
    for file_name, schema in app_json_schema().items():
        (out_dir / file_name).write_text(json.dumps(schema, indent=2), encoding="utf-8")
        sys.stdout.write(f"Wrote {out_dir / file_name}\n")
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    from main import app
    from settings import get_settings

    settings = get_settings()
    uvicorn.run(app, host=args.host or settings.host, port=args.port or settings.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cluster-apps", description="Manage GitOps app manifests")
    commands = parser.add_subparsers(dest="command", required=True)

    app_parser = commands.add_parser("app", help="Manage app configuration files")
    app_commands = app_parser.add_subparsers(dest="app_command", required=True)

    validate = app_commands.add_parser("validate", help="Validate an app.yaml against the app schema")
    validate.add_argument("appPath", help="Path to an app directory or app.yaml file")
    validate.set_defaults(func=cmd_validate)

    init = app_commands.add_parser("init", help="Create a starter app.yaml with default values")
    init.add_argument("name", help="App name to set in the config")
    init.add_argument("targetPath", nargs="?", default=".",
                      help="Directory to create app.yaml in, or a path to a yaml file")
    init.set_defaults(func=cmd_init)

    schema = app_commands.add_parser("schema", help="Write JSON Schema files for app configs")
    schema.add_argument("outDir", nargs="?", default=".", help="Directory to write the schema files to")
    schema.set_defaults(func=cmd_schema)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
