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

import boto3
import pytest
from moto import mock_aws

from chefcompute.configuration import load_config
from chefcompute.nodes import Node
from chefcompute.runList import CookbookVersion
from chefcompute.services import ChefService, ComputeService


class FakeChefService(ChefService):
    def __init__(self, cookbook_versions=None):
        self.cookbook_versions = cookbook_versions or []
        self.run_lists = {}
        self.clients = set()
        self.calls = []

    def list_cookbook_versions(self):
        return list(self.cookbook_versions)

    def update_run_list(self, group, run_list):
        self.calls.append(('update_run_list', group))
        self.run_lists[group] = list(run_list)

    def get_run_list(self, group):
        return list(self.run_lists.get(group, []))

    def create_bootstrap_script(self, group):
        self.calls.append(('create_bootstrap_script', group))
        self.clients.add('{0}-client'.format(group))

        return b'#!/bin/sh\nchef-client -j /etc/chef/first-boot.json\n'

    def purge_stale(self, prefix, threshold):
        self.calls.append(('purge_stale', prefix, threshold))

    def client_exists(self, name):
        return name in self.clients

    def delete_client(self, name):
        self.calls.append(('delete_client', name))
        self.clients.discard(name)


class FakeComputeService(ComputeService):
    """Creates nodes in memory; identities listed in fail are not started"""

    def __init__(self, fail=None):
        self.fail = set(fail or [])
        self.nodes = {}
        self.init_actions = []
        self.calls = []

    def create_nodes(self, group, count, init_action):
        self.calls.append(('create_nodes', group, count))
        self.init_actions.append(init_action)

        succeeded, failed = [], {}

        for index in range(1, count + 1):
            identity = '{0}-{1}'.format(group, index)

            if identity in self.fail:
                failed[identity] = RuntimeError('failed to start')
                continue

            node = Node('i-{0:08d}'.format(index), identity, group,
                        public_addresses=['10.0.0.{0}'.format(index)])

            self.nodes[node.id] = node
            succeeded.append(node)

        return succeeded, failed

    def destroy_matching(self, group):
        self.calls.append(('destroy_matching', group))

        destroyed = [node.id for node in self.nodes.values()
                     if node.group == group]

        for node_id in destroyed:
            del self.nodes[node_id]

        return destroyed


@pytest.fixture
def config():
    return load_config({
        'chef_endpoint': 'https://chef.example.com/organizations/test',
        'chef_identity': 'tester',
        'ami': 'ami-12c6146b',
        'createtimeout': 60,
        'launch_timeout': 60,
    })


@pytest.fixture
def apache2_cookbooks():
    return [
        CookbookVersion('apache2', '1.0.0', recipes=[
            'recipes/default.rb',
            'recipes/mod_proxy.rb',
            'recipes/mod_proxy_http.rb',
        ]),
        CookbookVersion('java', '2.1.0', recipes=['recipes/default.rb']),
    ]


@pytest.fixture
def chef_service(apache2_cookbooks):
    return FakeChefService(cookbook_versions=apache2_cookbooks)


@pytest.fixture
def compute_service():
    return FakeComputeService()


@pytest.fixture
def aws_credentials(monkeypatch):
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def ec2(aws_credentials):
    with mock_aws():
        yield boto3.resource('ec2', region_name='us-east-1')


@pytest.fixture
def valid_ami(ec2):
    return ec2.meta.client.describe_images()['Images'][0]['ImageId']
