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


from typing import Any, Dict, List, Optional

from boto3.resources.base import ServiceResource


class LaunchRequest(object):
    def __init__(self, group: str, count: int = 1,
                 init_action: Optional[str] = None) -> None:
        self.group = group
        self.count = count
        self.init_action = init_action
        self.node_request_queue: List[Dict[str, Any]] = []
        self.configDict: Optional[Dict[str, Any]] = None
        self.conn: Optional[ServiceResource] = None


def node_identity(group: str, index: int) -> str:
    return '{0}-{1}'.format(group, index)


def init_node_request_queue(identities: List[str]) -> List[Dict[str, Any]]:
    """
    Construct a lookup table of node requests
    """

    node_request_queue: List[Dict[str, Any]] = []

    for identity in identities:
        node_request = {
            'identity': identity,
            'status': 'pending',
        }

        node_request_queue.append(node_request)

    return node_request_queue
