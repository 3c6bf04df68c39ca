#!/usr/bin/env python

# Copyright 2008-2018 Univa Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Terminate every compute node tagged with a group
"""

import argparse
import logging
import sys
from typing import List, Optional

from chefcompute.configuration import (DEFAULT_CONFIG_SECTION,
                                       load_config, read_config_file)
from chefcompute.ec2 import Ec2ComputeService
from chefcompute.exceptions import ChefComputeException


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Terminate all compute nodes tagged with a group')

    parser.add_argument(
        '--group', metavar='NAME',
        help='Group whose nodes are terminated (default: configured group)')

    parser.add_argument(
        '--config', metavar='FILE',
        help='Read settings from INI file; CHEFCOMPUTE_* environment'
             ' variables supply settings the file does not set')

    parser.add_argument(
        '--section', default=DEFAULT_CONFIG_SECTION,
        help='INI file section (default: %(default)s)')

    aws_group = parser.add_argument_group('EC2 Options')

    aws_group.add_argument('--region', help='EC2 region')

    aws_group.add_argument(
        '--endpoint', help='EC2 (or compatible) API endpoint')

    parser.add_argument('--verbose', action='store_true', default=False,
                        help='Enable verbose logging')

    parser.add_argument('--debug', action='store_true', default=False,
                        help='Enable debug logging')

    return parser


def init_logging(debug: bool = False, verbose: bool = False) -> None:
    logger = logging.getLogger('chefcompute')

    if debug:
        logger.setLevel(logging.DEBUG)
    elif verbose:
        logger.setLevel(logging.INFO)
    else:
        logger.setLevel(logging.WARNING)

    ch = logging.StreamHandler()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    ch.setFormatter(formatter)

    logger.addHandler(ch)


def main(argv: Optional[List[str]] = None) -> int:
    args = get_parser().parse_args(argv)

    init_logging(debug=args.debug, verbose=args.verbose)

    try:
        values = read_config_file(args.config, section=args.section) \
            if args.config else {}

        for key, value in (
                ('group', args.group),
                ('region', args.region),
                ('compute_endpoint', args.endpoint)):
            if value:
                values[key] = value

        config = load_config(values, check_required=False)

        terminated = Ec2ComputeService(config).destroy_matching(
            config['group'])
    except ChefComputeException as exc:
        sys.stderr.write('Error: {0}\n'.format(exc))

        return 1

    for instance_id in terminated:
        print(instance_id)

    return 0


if __name__ == '__main__':
    sys.exit(main())
