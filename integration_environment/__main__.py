# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import sys
from typing import Sequence

from integration_environment._config import default_config
from integration_environment._plays import TAGS
from integration_environment._plays import MissingArtifact
from integration_environment._plays import all_plays
from integration_environment._plays import check_artifact
from integration_environment._plays import endpoint_table
from integration_environment._plays import needs_artifact
from integration_environment._plays import select


def main(args: Sequence[str]) -> int:
    parsed_args = _parse_args(args)
    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    config = default_config()
    if parsed_args.endpoints:
        print(endpoint_table(config).describe())
        return 0
    plays = all_plays(config)
    tags = parsed_args.tags
    if needs_artifact(plays, tags):
        try:
            check_artifact(config)
        except MissingArtifact as e:
            _logger.error("%s", e)
            return 2
    changed_count = 0
    for play, commands in select(plays, tags):
        _logger.info("Play %r: %d commands", play.name, len(commands))
        changed_count += play.make_fleet().run(commands)
    _logger.info("Done: %d commands changed something", changed_count)
    return 0


def _parse_args(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m integration_environment',
        description="Set up the domain controller and the Linux test host.",
        )
    parser.add_argument(
        '--tags',
        type=_tags,
        default=[],
        help=f"Comma-separated subset of: {', '.join(TAGS)}. Everything by default.",
        )
    parser.add_argument(
        '--endpoints',
        action='store_true',
        help="Print HTTPS endpoints and exit.",
        )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help="Log remote requests and scripts.",
        )
    return parser.parse_args(args)


def _tags(value: str):
    tags = [t.strip() for t in value.split(',') if t.strip()]
    unknown = set(tags) - set(TAGS)
    if unknown:
        raise argparse.ArgumentTypeError(f"Unknown tags {sorted(unknown)}; known: {', '.join(TAGS)}")
    return tags


_logger = logging.getLogger(__name__)


if __name__ == '__main__':
    exit(main(sys.argv[1:]))
