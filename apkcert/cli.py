# apkcert/cli.py
import argparse
import logging
import sys

from apkcert.common.config import DEFAULT_CONFIG_PATH, load_config_or_default
from apkcert.common.errors import ApkCertError
from apkcert.issuer import issue
from apkcert.storage.report import render_report

logger = logging.getLogger("apkcert")


def build_parser():
    p = argparse.ArgumentParser(
        prog="apkcert",
        description="Generate a self-signed APK signing certificate in a JKS keystore.",
    )
    p.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH,
                   help=f"JSON config file (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--redact-passwords", action="store_true",
                   help="do not print passwords in the report or on the console")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = load_config_or_default(args.config)
    try:
        result = issue(cfg, redact=args.redact_passwords)
    except ApkCertError as e:
        logger.error("failed to generate APK signing certificate: %s", e)
        return 1

    print(render_report(result.config, result.cert_info,
                        report_path=result.report_path, redact=args.redact_passwords), end="")
    return 0


if __name__ == "__main__":
    sys.exit(main())
