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

from typing import Dict, Iterator, List, Optional, Union

from .exceptions import InvalidArgument, PartialProvisioning


class Node(object):
    """
    A compute node created on behalf of a group
    """

    def __init__(self, id: str, name: str, group: str,
                 public_addresses: Optional[List[str]] = None,
                 private_addresses: Optional[List[str]] = None,
                 state: Optional[str] = None) -> None:
        self.id = id
        self.name = name
        self.group = group
        self.public_addresses = list(public_addresses or [])
        self.private_addresses = list(private_addresses or [])
        self.state = state

    @property
    def primary_address(self) -> Optional[str]:
        return self.public_addresses[-1] if self.public_addresses else None

    def __repr__(self):
        return '<Node id={0} name={1} group={2}>'.format(
            self.id, self.name, self.group)


class NodeSet(object):
    """
    Result of a node creation request.

    Successfully created nodes and failed creation attempts are kept
    together; the total always equals the number of nodes requested.
    """

    def __init__(self, succeeded: Optional[List[Node]] = None,
                 failed: Optional[Dict[str, Exception]] = None) -> None:
        self.succeeded: List[Node] = list(succeeded or [])
        self.failed: Dict[str, Exception] = dict(failed or {})

    def __len__(self):
        return len(self.succeeded) + len(self.failed)

    def __iter__(self) -> Iterator[Union[Node, str]]:
        yield from self.succeeded
        yield from self.failed

    @property
    def is_partial(self) -> bool:
        return bool(self.failed)

    def raise_for_partial(self) -> None:
        """
        :raises PartialProvisioning: at least one node failed to start
        """

        if self.failed:
            raise PartialProvisioning(self)

    def merge(self, other: 'NodeSet') -> 'NodeSet':
        return NodeSet(self.succeeded + other.succeeded,
                       dict(self.failed, **other.failed))


class BootstrapArtifact(object):
    """
    Bootstrap script produced by the configuration-management service.

    The payload is handed to the compute service once, after which the
    artifact is spent.
    """

    def __init__(self, group: str, payload: bytes) -> None:
        self.group = group
        self.__payload: Optional[bytes] = payload

    @property
    def consumed(self) -> bool:
        return self.__payload is None

    def consume(self) -> str:
        """
        :raises InvalidArgument: artifact already consumed
        """

        if self.__payload is None:
            raise InvalidArgument(
                'Bootstrap script for group [{0}] already'
                ' consumed'.format(self.group))

        payload, self.__payload = self.__payload, None

        if isinstance(payload, bytes):
            return payload.decode('utf-8')

        return payload
