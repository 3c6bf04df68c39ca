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

import logging
from typing import Callable, List, Optional, Sequence

import requests

from . import state
from .exceptions import (ChefComputeException, InvalidArgument,
                         PolicyMismatch, UpstreamError, VerificationError)
from .configuration import ProvisioningConfig
from .launchRequest import node_identity
from .liveness import (DEFAULT_CONCURRENCY, DEFAULT_EXPECTED_CONTENT,
                       DEFAULT_TIMEOUT, check_nodes)
from .nodes import BootstrapArtifact, Node, NodeSet
from .runList import any_cookbook, contains_recipe
from .services import ChefService, ComputeService


class ProvisioningOrchestrator(object):
    """
    Coordinates one provisioning run for a group: set the run-list,
    bootstrap, create nodes, verify them, and tear everything down.

    Every node and client registration created during the run is
    remembered so teardown can act on it after any failure. Use as a
    context manager, or call run(), to guarantee teardown::

        with ProvisioningOrchestrator(config, chef, compute) as orch:
            orch.ensure_run_list(['apache2'])
            ...
    """

    def __init__(self, config: ProvisioningConfig,
                 chef_service: ChefService,
                 compute_service: ComputeService,
                 client_name: Optional[str] = None,
                 http_get: Callable = requests.get) -> None:
        self.config = config
        self.chef = chef_service
        self.compute = compute_service
        self.client_name = client_name or config.get('client_name')
        self.http_get = http_get

        self._logger = logging.getLogger('chefcompute.orchestrator')

        self.group: str = config['group']
        self.state = state.RUN_STATE_INIT
        self.nodes = NodeSet()

    def __enter__(self) -> 'ProvisioningOrchestrator':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        self.teardown()

        return False

    def __transition(self, new_state: str) -> None:
        self.state = state.check_transition(self.state, new_state)

        self._logger.debug(
            'Group [%s] entered state [%s]', self.group, self.state)

    def __setting(self, key: str, default):
        value = self.config.get(key)

        return default if value is None else value

    def __check_state(self, new_state: str) -> None:
        # validate before any remote call is made
        state.check_transition(self.state, new_state)

    def __check_recipes_available(self, run_list: List[str]) -> None:
        try:
            cookbook_versions = list(self.chef.list_cookbook_versions())
        except ChefComputeException:
            raise
        except Exception as exc:
            raise UpstreamError(
                'Unable to list cookbook versions: {0}'.format(exc),
                cause=exc)

        available = ', '.join(
            repr(cookbook_version) for cookbook_version in cookbook_versions)

        for item in run_list:
            if item.startswith('role['):
                continue

            if not any_cookbook(cookbook_versions, contains_recipe(item)):
                raise InvalidArgument(
                    'Recipe [{0}] not found in cookbooks: [{1}]'.format(
                        item, available))

    def ensure_run_list(self, recipes: Sequence[str],
                        group: Optional[str] = None) -> List[str]:
        """
        Overwrite the group's run-list and confirm it by reading it back

        :raises InvalidArgument: a recipe is not provided by any cookbook
        :raises PolicyMismatch: read-back differs from the requested list
        :raises UpstreamError: remote call failed
        """

        group = group or self.group
        run_list = list(recipes)

        self.__check_state(state.RUN_STATE_RUNLIST_SET)

        self.__check_recipes_available(run_list)

        self._logger.info(
            'Updating run-list for group [%s]: %s', group, run_list)

        try:
            self.chef.update_run_list(group, run_list)

            actual = list(self.chef.get_run_list(group))
        except ChefComputeException:
            raise
        except Exception as exc:
            raise UpstreamError(
                'Unable to update run-list for group [{0}]: {1}'.format(
                    group, exc), cause=exc)

        if actual != run_list:
            raise PolicyMismatch(run_list, actual)

        self.__transition(state.RUN_STATE_RUNLIST_SET)

        return actual

    def bootstrap(self, group: Optional[str] = None) -> BootstrapArtifact:
        """
        :raises UpstreamError: bootstrap script could not be created
        """

        group = group or self.group

        self.__check_state(state.RUN_STATE_BOOTSTRAPPED)

        try:
            payload = self.chef.create_bootstrap_script(group)
        except ChefComputeException:
            raise
        except Exception as exc:
            raise UpstreamError(
                'Unable to create bootstrap script for group [{0}]:'
                ' {1}'.format(group, exc), cause=exc)

        if not payload:
            raise UpstreamError(
                'Empty bootstrap script returned for group [{0}]'.format(
                    group))

        self.__transition(state.RUN_STATE_BOOTSTRAPPED)

        return BootstrapArtifact(group, payload)

    def provision_nodes(self, count: int, bootstrap: BootstrapArtifact,
                        group: Optional[str] = None) -> NodeSet:
        """
        Request ``count`` nodes. Never raises on partial failure: the
        result always accounts for ``count`` nodes, successful or not.

        :raises InvalidArgument: invalid count or spent bootstrap script
        """

        group = group or self.group

        if count < 1:
            raise InvalidArgument('Invalid node count')

        self.__check_state(state.RUN_STATE_NODES_REQUESTED)

        init_action = bootstrap.consume()

        identities = [node_identity(group, index)
                      for index in range(1, count + 1)]

        self._logger.info(
            'Requesting %d node(s) in group [%s]', count, group)

        try:
            succeeded, failed = self.compute.create_nodes(
                group, count, init_action)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.exception(
                'Error creating nodes in group [%s]', group)

            error = exc if isinstance(exc, ChefComputeException) else \
                UpstreamError(str(exc), cause=exc)

            succeeded, failed = [], {identity: error
                                     for identity in identities}

        result = NodeSet(succeeded, failed)

        # account for nodes the service neither created nor reported
        for identity in identities:
            if len(result) >= count:
                break

            if identity not in result.failed and \
                    identity not in [node.name for node in result.succeeded]:
                result.failed[identity] = UpstreamError(
                    'No result returned for node [{0}]'.format(identity))

        if result.failed:
            self._logger.warning(
                '%d of %d node(s) in group [%s] failed to start: %s',
                len(result.failed), count, group,
                ', '.join(sorted(result.failed)))

        self.nodes = self.nodes.merge(result)

        self.__transition(state.RUN_STATE_NODES_REQUESTED)

        return result

    def verify_liveness(self, nodes: Sequence[Node],
                        expected_content: Optional[str] = None) -> None:
        """
        Check every node serves ``expected_content`` over HTTP

        :raises VerificationError: names the first failing node
        """

        if expected_content is None:
            expected_content = self.__setting(
                'expected_content', DEFAULT_EXPECTED_CONTENT)

        self.__check_state(state.RUN_STATE_VERIFIED)

        nodes = list(nodes)

        failures = check_nodes(
            nodes,
            expected_content=expected_content,
            timeout=self.__setting('liveness_timeout', DEFAULT_TIMEOUT),
            concurrency=self.__setting(
                'liveness_concurrency', DEFAULT_CONCURRENCY),
            http_get=self.http_get,
        )

        for node, reason in failures:
            self._logger.error(
                'Node [%s] failed verification: %s', node.name, reason)

        if failures:
            node, reason = failures[0]

            raise VerificationError(
                node, reason,
                failures={failed.name: why for failed, why in failures})

        self._logger.info(
            'Verified %d node(s) in group [%s]', len(nodes), self.group)

        self.__transition(state.RUN_STATE_VERIFIED)

    def teardown(self, group: Optional[str] = None,
                 stale_threshold: Optional[int] = None) -> List[Exception]:
        """
        Destroy all compute resources of the group, purge stale
        registrations, and delete the known client. Each step is attempted
        regardless of earlier failures.

        :return: errors raised by individual steps
        """

        group = group or self.group

        if stale_threshold is None:
            stale_threshold = self.__setting('stale_threshold', 1)

        errors: List[Exception] = []

        self._logger.info('Tearing down group [%s]', group)

        try:
            destroyed = self.compute.destroy_matching(group)

            self._logger.info(
                'Destroyed %d node(s) in group [%s]',
                len(destroyed or []), group)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.exception(
                'Error destroying nodes in group [%s]', group)

            errors.append(exc)

        try:
            self.chef.purge_stale(group + '-', stale_threshold)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.exception(
                'Error purging stale registrations for group [%s]', group)

            errors.append(exc)

        if self.client_name:
            try:
                if self.chef.client_exists(self.client_name):
                    self._logger.info(
                        'Deleting client [%s]', self.client_name)

                    self.chef.delete_client(self.client_name)
            except Exception as exc:  # pylint: disable=broad-except
                self._logger.exception(
                    'Error deleting client [%s]', self.client_name)

                errors.append(exc)

        try:
            self.compute.close()
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.exception('Error closing compute service')

            errors.append(exc)

        self.__transition(state.RUN_STATE_TORN_DOWN)

        return errors

    def run(self, recipes: Sequence[str], count: int = 1,
            expected_content: Optional[str] = None) -> NodeSet:
        """
        Execute a complete provisioning run. Teardown is invoked once on
        every exit path.
        """

        try:
            self.ensure_run_list(recipes)

            artifact = self.bootstrap()

            result = self.provision_nodes(count, artifact)

            self.verify_liveness(result.succeeded,
                                 expected_content=expected_content)

            return result
        finally:
            self.teardown()
