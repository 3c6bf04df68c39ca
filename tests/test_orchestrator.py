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

import mock
import pytest
import requests

from chefcompute import state
from chefcompute.exceptions import (InvalidArgument, InvalidStateTransition,
                                    PartialProvisioning, PolicyMismatch,
                                    UpstreamError, VerificationError)
from chefcompute.nodes import Node
from chefcompute.orchestrator import ProvisioningOrchestrator

from .conftest import FakeChefService, FakeComputeService


def make_response(text, status_code=200):
    response = mock.Mock()
    response.text = text
    response.status_code = status_code
    response.raise_for_status.return_value = None

    return response


def http_get_from(bodies):
    """Serve response bodies keyed by node address"""

    def http_get(url, timeout=None):
        address = url[len('http://'):].rstrip('/')

        body = bodies[address]
        if isinstance(body, Exception):
            raise body

        return make_response(body)

    return mock.Mock(side_effect=http_get)


def provisioned(orch, count=1):
    orch.ensure_run_list(['apache2'])

    return orch.provision_nodes(count, orch.bootstrap())


def test_ensure_run_list(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    result = orch.ensure_run_list(['apache2'])

    assert result == ['apache2']
    assert chef_service.get_run_list('jcloudschef') == ['apache2']
    assert orch.state == state.RUN_STATE_RUNLIST_SET


def test_ensure_run_list_keeps_order(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    run_list = ['recipe[java]', 'recipe[apache2]', 'role[web]']

    assert orch.ensure_run_list(run_list) == run_list


def test_ensure_run_list_mismatch(config, apache2_cookbooks,
                                  compute_service):
    class ReorderingChefService(FakeChefService):
        def get_run_list(self, group):
            return list(reversed(self.run_lists[group]))

    orch = ProvisioningOrchestrator(
        config, ReorderingChefService(cookbook_versions=apache2_cookbooks),
        compute_service)

    with pytest.raises(PolicyMismatch) as excinfo:
        orch.ensure_run_list(['apache2', 'java'])

    assert excinfo.value.expected == ['apache2', 'java']
    assert excinfo.value.actual == ['java', 'apache2']
    assert orch.state == state.RUN_STATE_INIT


def test_ensure_run_list_upstream_error(config, chef_service,
                                        compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    with mock.patch.object(chef_service, 'update_run_list',
                           side_effect=ConnectionError('refused')):
        with pytest.raises(UpstreamError) as excinfo:
            orch.ensure_run_list(['apache2'])

    assert isinstance(excinfo.value.cause, ConnectionError)


@pytest.mark.parametrize('recipe', [
    'apache2::bar',
    'foo::bar',
    'recipe[nginx]',
])
def test_ensure_run_list_unknown_recipe(config, chef_service,
                                       compute_service, recipe):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    with pytest.raises(InvalidArgument) as excinfo:
        orch.ensure_run_list(['apache2', recipe])

    assert recipe in str(excinfo.value)
    assert 'apache2-1.0.0' in str(excinfo.value)

    # nothing written
    assert not chef_service.calls
    assert orch.state == state.RUN_STATE_INIT


def test_ensure_run_list_without_cookbooks(config, compute_service):
    chef_service = FakeChefService()

    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    with pytest.raises(InvalidArgument):
        orch.ensure_run_list(['apache2'])

    # roles are not checked against cookbooks
    assert orch.ensure_run_list(['role[web]']) == ['role[web]']


def test_ensure_run_list_cookbook_listing_error(config, chef_service,
                                               compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    with mock.patch.object(chef_service, 'list_cookbook_versions',
                           side_effect=ConnectionError('refused')):
        with pytest.raises(UpstreamError):
            orch.ensure_run_list(['apache2'])


def test_bootstrap(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)
    orch.ensure_run_list(['apache2'])

    artifact = orch.bootstrap()

    assert artifact.group == 'jcloudschef'
    assert not artifact.consumed
    assert artifact.consume().startswith('#!/bin/sh')
    assert artifact.consumed

    with pytest.raises(InvalidArgument):
        artifact.consume()


def test_bootstrap_unregistered_group(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)
    orch.ensure_run_list(['apache2'])

    with mock.patch.object(chef_service, 'create_bootstrap_script',
                           side_effect=KeyError('jcloudschef')):
        with pytest.raises(UpstreamError):
            orch.bootstrap()

    assert orch.state == state.RUN_STATE_RUNLIST_SET


def test_provision_nodes(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    result = provisioned(orch, count=2)

    assert len(result) == 2
    assert not result.is_partial
    assert [node.name for node in result.succeeded] == \
        ['jcloudschef-1', 'jcloudschef-2']
    assert compute_service.init_actions[0].startswith('#!/bin/sh')
    assert orch.state == state.RUN_STATE_NODES_REQUESTED


def test_provision_nodes_partial_failure(config, chef_service):
    compute_service = FakeComputeService(fail=['jcloudschef-2'])

    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    result = provisioned(orch, count=3)

    assert len(result) == 3
    assert len(result.succeeded) == 2
    assert list(result.failed) == ['jcloudschef-2']

    with pytest.raises(PartialProvisioning) as excinfo:
        result.raise_for_partial()

    assert excinfo.value.nodeset is result


def test_provision_single_node_failure(config, chef_service):
    compute_service = FakeComputeService(fail=['jcloudschef-1'])

    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    result = provisioned(orch, count=1)

    assert len(result) == 1
    assert not result.succeeded
    assert 'jcloudschef-1' in result.failed

    assert orch.teardown() == []
    assert orch.state == state.RUN_STATE_TORN_DOWN


def test_provision_nodes_service_error(config, chef_service,
                                       compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    with mock.patch.object(compute_service, 'create_nodes',
                           side_effect=RuntimeError('quota exceeded')):
        result = provisioned(orch, count=3)

    assert len(result) == 3
    assert not result.succeeded
    assert sorted(result.failed) == \
        ['jcloudschef-1', 'jcloudschef-2', 'jcloudschef-3']
    assert all(isinstance(error, UpstreamError)
               for error in result.failed.values())


def test_provision_nodes_missing_results(config, chef_service,
                                         compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    node = Node('i-1', 'jcloudschef-1', 'jcloudschef')

    with mock.patch.object(compute_service, 'create_nodes',
                           return_value=([node], {})):
        result = provisioned(orch, count=3)

    assert len(result) == 3
    assert sorted(result.failed) == ['jcloudschef-2', 'jcloudschef-3']


def test_provision_nodes_invalid_count(config, chef_service,
                                       compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)
    orch.ensure_run_list(['apache2'])

    with pytest.raises(InvalidArgument):
        orch.provision_nodes(0, orch.bootstrap())


def test_provision_before_bootstrap(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    artifact = mock.Mock()

    with pytest.raises(InvalidStateTransition):
        orch.provision_nodes(1, artifact)

    artifact.consume.assert_not_called()


def test_verify_liveness(config, chef_service, compute_service):
    http_get = http_get_from({
        '10.0.0.1': '<html><body><h1>It works!</h1></body></html>',
        '10.0.0.2': '<html><body><h1>It works!</h1></body></html>',
    })

    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    http_get=http_get)

    result = provisioned(orch, count=2)

    orch.verify_liveness(result.succeeded)

    assert http_get.call_count == 2
    assert orch.state == state.RUN_STATE_VERIFIED


def test_verify_liveness_names_failing_node(config, chef_service,
                                            compute_service):
    http_get = http_get_from({
        '10.0.0.1': 'It works!',
        '10.0.0.2': 'Welcome to nginx!',
        '10.0.0.3': 'It works!',
    })

    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    http_get=http_get)

    result = provisioned(orch, count=3)

    with pytest.raises(VerificationError) as excinfo:
        orch.verify_liveness(result.succeeded)

    assert excinfo.value.node.name == 'jcloudschef-2'
    assert list(excinfo.value.failures) == ['jcloudschef-2']

    # remaining nodes were still checked
    assert http_get.call_count == 3
    assert orch.state == state.RUN_STATE_NODES_REQUESTED


def test_verify_liveness_timeout(config, chef_service, compute_service):
    http_get = http_get_from({
        '10.0.0.1': requests.exceptions.ConnectTimeout('timed out'),
        '10.0.0.2': requests.exceptions.ConnectionError('refused'),
    })

    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    http_get=http_get)

    result = provisioned(orch, count=2)

    with pytest.raises(VerificationError) as excinfo:
        orch.verify_liveness(result.succeeded)

    assert excinfo.value.node.name == 'jcloudschef-1'
    assert 'timeout' in excinfo.value.reason
    assert sorted(excinfo.value.failures) == \
        ['jcloudschef-1', 'jcloudschef-2']


def test_verify_liveness_custom_marker(config, chef_service,
                                       compute_service):
    http_get = http_get_from({'10.0.0.1': 'It works!'})

    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    http_get=http_get)

    result = provisioned(orch)

    with pytest.raises(VerificationError):
        orch.verify_liveness(result.succeeded, expected_content='Hello')


def test_teardown_order(config, chef_service, compute_service):
    manager = mock.Mock()
    manager.destroy_matching.return_value = []
    manager.client_exists.return_value = True

    chef_service.purge_stale = manager.purge_stale
    chef_service.client_exists = manager.client_exists
    chef_service.delete_client = manager.delete_client
    compute_service.destroy_matching = manager.destroy_matching
    compute_service.close = manager.close

    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    client_name='jcloudschef-client')

    assert orch.teardown() == []

    assert manager.mock_calls == [
        mock.call.destroy_matching('jcloudschef'),
        mock.call.purge_stale('jcloudschef-', 1),
        mock.call.client_exists('jcloudschef-client'),
        mock.call.delete_client('jcloudschef-client'),
        mock.call.close(),
    ]


def test_teardown_is_best_effort(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    client_name='jcloudschef-client')
    provisioned(orch)

    error = RuntimeError('compute API unavailable')

    with mock.patch.object(compute_service, 'destroy_matching',
                           side_effect=error):
        errors = orch.teardown()

    assert errors == [error]
    assert ('purge_stale', 'jcloudschef-', 1) in chef_service.calls
    assert ('delete_client', 'jcloudschef-client') in chef_service.calls


def test_teardown_idempotent(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    client_name='jcloudschef-client')
    provisioned(orch, count=2)

    assert orch.teardown() == []
    assert not compute_service.nodes

    assert orch.teardown() == []
    assert orch.state == state.RUN_STATE_TORN_DOWN

    assert chef_service.calls.count(
        ('delete_client', 'jcloudschef-client')) == 1


def test_teardown_without_resources(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    assert orch.teardown() == []
    assert orch.state == state.RUN_STATE_TORN_DOWN

    with pytest.raises(InvalidStateTransition):
        orch.ensure_run_list(['apache2'])


def test_run(config, chef_service, compute_service):
    http_get = http_get_from({'10.0.0.1': 'It works!'})

    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    http_get=http_get)

    with mock.patch.object(orch, 'teardown',
                           wraps=orch.teardown) as teardown_mock:
        result = orch.run(['apache2'], count=1)

    assert len(result.succeeded) == 1
    teardown_mock.assert_called_once_with()
    assert not compute_service.nodes


def test_run_tears_down_on_verification_failure(config, chef_service,
                                                compute_service):
    http_get = http_get_from({'10.0.0.1': 'Forbidden'})

    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    http_get=http_get)

    with mock.patch.object(orch, 'teardown',
                           wraps=orch.teardown) as teardown_mock:
        with pytest.raises(VerificationError):
            orch.run(['apache2'])

    teardown_mock.assert_called_once_with()
    assert not compute_service.nodes
    assert orch.state == state.RUN_STATE_TORN_DOWN


def test_run_tears_down_on_upstream_error(config, chef_service,
                                          compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    with mock.patch.object(chef_service, 'get_run_list',
                           side_effect=IOError('connection reset')):
        with pytest.raises(UpstreamError):
            orch.run(['apache2'])

    assert ('destroy_matching', 'jcloudschef') in compute_service.calls
    assert orch.state == state.RUN_STATE_TORN_DOWN


def test_context_manager_tears_down(config, chef_service, compute_service):
    with pytest.raises(KeyboardInterrupt):
        with ProvisioningOrchestrator(
                config, chef_service, compute_service) as orch:
            provisioned(orch, count=2)

            raise KeyboardInterrupt()

    assert not compute_service.nodes
    assert orch.state == state.RUN_STATE_TORN_DOWN


def test_teardown_zero_stale_threshold(config, chef_service,
                                       compute_service):
    config = config.model_copy(update={'stale_threshold': 0})

    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    assert orch.teardown() == []

    assert ('purge_stale', 'jcloudschef-', 0) in chef_service.calls


def test_teardown_close_error(config, chef_service, compute_service):
    orch = ProvisioningOrchestrator(config, chef_service, compute_service)

    error = RuntimeError('connection already closed')

    with mock.patch.object(compute_service, 'close', side_effect=error):
        assert orch.teardown() == [error]

    assert orch.state == state.RUN_STATE_TORN_DOWN


def test_verify_liveness_uses_configured_settings(config, chef_service,
                                                  compute_service):
    config = config.model_copy(update={
        'expected_content': 'Hello',
        'liveness_timeout': 7,
    })

    http_get = http_get_from({'10.0.0.1': 'Hello, world'})

    orch = ProvisioningOrchestrator(config, chef_service, compute_service,
                                    http_get=http_get)

    orch.verify_liveness(provisioned(orch).succeeded)

    http_get.assert_called_once_with('http://10.0.0.1/', timeout=7)
