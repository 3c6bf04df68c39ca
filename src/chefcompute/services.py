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

from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

from .nodes import Node
from .runList import CookbookVersion


class ChefService(ABC):
    """
    Configuration-management server operations used during a
    provisioning run
    """

    @abstractmethod
    def list_cookbook_versions(self) -> List[CookbookVersion]:
        pass

    @abstractmethod
    def update_run_list(self, group: str, run_list: List[str]) -> None:
        pass

    @abstractmethod
    def get_run_list(self, group: str) -> List[str]:
        pass

    @abstractmethod
    def create_bootstrap_script(self, group: str) -> bytes:
        """
        Register a client for the group and return a first-boot script
        binding a node to the group's run-list
        """

    @abstractmethod
    def purge_stale(self, prefix: str, threshold: int) -> None:
        """
        Delete node and client registrations named with ``prefix`` that
        have been idle for more than ``threshold`` generations
        """

    @abstractmethod
    def client_exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def delete_client(self, name: str) -> None:
        pass


class ComputeService(ABC):
    @abstractmethod
    def create_nodes(self, group: str, count: int, init_action: str) \
            -> Tuple[List[Node], Dict[str, Exception]]:
        """
        Create ``count`` nodes tagged with ``group``, running
        ``init_action`` on first boot.

        :return: (successfully created nodes, identity -> error for each
                  node which failed to start)
        """

    @abstractmethod
    def destroy_matching(self, group: str) -> List[str]:
        """
        Destroy every node tagged with ``group``

        :return: ids of destroyed nodes
        """

    def close(self) -> None:
        """Release connections held by the service; called on teardown"""
