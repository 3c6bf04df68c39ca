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

import re
import shlex
from typing import Any, Dict, List, Optional

from pydantic import SecretStr


GROUP_TAG = 'chefcompute-group'


def parse_cfg_tags(value: str) -> Dict[str, str]:
    tags = {}

    for tagdef in shlex.split(value):
        key, value = tagdef.rsplit('=', 1) \
            if '=' in tagdef else (tagdef, '')
        tags[key] = value

    return tags


def sanitize_tag_value(value: str) -> str:
    # EC2 tag values allow letters, digits, spaces and + - = . _ : / @
    return re.sub(r'[^a-zA-Z0-9 +\-=._:/@]', '_', value)[:255]


def group_tag_value(group: str) -> str:
    """Returns the group tag value used both to tag and to find nodes"""
    return sanitize_tag_value(group)


def get_node_tags(group: str, identity: str,
                  tags: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Returns tags applied to a node at creation. The group tag and Name
    cannot be overridden by user-defined tags.
    """

    result = dict(tags or {})

    result[GROUP_TAG] = group_tag_value(group)
    result['Name'] = sanitize_tag_value(identity)

    return result


def to_tag_specification(tags: Dict[str, str]) -> List[Dict[str, str]]:
    return [{'Key': key, 'Value': value} for key, value in tags.items()]


def from_tag_specification(tags: Optional[List[Dict[str, str]]]) \
        -> Dict[str, str]:
    return {tag['Key']: tag['Value'] for tag in tags or []}


def secret_value(value: Any) -> Any:
    if isinstance(value, SecretStr):
        return value.get_secret_value()

    return value


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()
