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

# pylint: disable=logging-not-lazy,logging-format-interpolation

import itertools
import logging
import random
from typing import Any, Dict, List, NoReturn, Optional, Tuple

import boto3
import botocore
import gevent
import gevent.queue
from boto3.resources.base import ServiceResource
from botocore.config import Config

from .exceptions import (ConfigurationError, InvalidArgument,
                         OperationTimeoutError, UpstreamError)
from .helpers import (GROUP_TAG, get_node_tags, group_tag_value,
                      secret_value, to_tag_specification)
from .launchRequest import (LaunchRequest, init_node_request_queue,
                            node_identity)
from .nodes import Node
from .services import ComputeService


class Ec2ComputeService(ComputeService):
    """
    Compute service backed by AWS EC2 (or a compatible API)

    """
    LAUNCH_INITIAL_SLEEP_TIME = 10.0

    # Process only 10 instances at a time to prevent triggering AWS API
    # rate limiting.
    MAX_LAUNCH_WORKERS = 10

    def __init__(self, config: Dict[str, Any],
                 conn: Optional[ServiceResource] = None) -> None:
        self.config = config
        self._logger = logging.getLogger('chefcompute.ec2')
        self.__conn = conn
        self.__owns_conn = conn is None

    def getConnectionArgs(self, configDict: Dict[str, Any]) -> Dict[str, Any]:
        connectionArgs = {}

        # only include access/secret key if defined in configuration
        access_key = configDict.get('compute_identity')
        if access_key is not None:
            connectionArgs['aws_access_key_id'] = access_key

            connectionArgs['aws_secret_access_key'] = secret_value(
                configDict.get('compute_credential'))

        return connectionArgs

    def getProxyConfig(self, configDict: Dict[str, Any]) -> Dict[str, Any]:
        proxy_args = {}
        if configDict.get('proxy_host'):
            self._logger.debug('Using proxy for EC2 (%s:%s)' % (
                configDict['proxy_host'], configDict['proxy_port']))

            user_pass = ''
            if configDict.get('proxy_user'):
                user_pass = configDict['proxy_user']

                if configDict.get('proxy_pass'):
                    user_pass += ':' + secret_value(configDict['proxy_pass'])

                user_pass += '@'

            proxy_url = '{user_pass}{host}:{port}'.format(
                user_pass=user_pass,
                host=configDict['proxy_host'],
                port=configDict['proxy_port']
            )

            proxy_args = {'http': proxy_url, 'https': proxy_url}

        return proxy_args

    def getEC2Connection(self) -> ServiceResource:
        """
        Returns a boto3 connection to EC2

        :raises ConfigurationError: invalid region or credentials
        """

        if self.__conn is not None:
            return self.__conn

        connectionArgs = self.getConnectionArgs(self.config)
        proxyArgs = self.getProxyConfig(self.config)

        # For boto3, we put the proxy configuration in a
        # botocore.config.Config instance
        config = Config(proxies=proxyArgs) if proxyArgs else None

        resource_args = {'config': config}

        # blank endpoint means provider default
        if self.config.get('compute_endpoint'):
            resource_args['endpoint_url'] = self.config['compute_endpoint']

        try:
            session = boto3.Session(region_name=self.config['region'],
                                    **connectionArgs)

            self.__conn = session.resource('ec2', **resource_args)
        except (botocore.exceptions.BotoCoreError, ValueError) as exc:
            raise ConfigurationError(
                'Unable to connect to EC2 region [{0}]: {1}'.format(
                    self.config['region'], exc))

        return self.__conn

    def create_nodes(self, group: str, count: int, init_action: str) \
            -> Tuple[List[Node], Dict[str, Exception]]:
        """
        Launch one instance per requested node, then wait for all launched
        instances to reach 'running' state. Instances failing to start are
        terminated.

        :raises InvalidArgument: invalid node count
        :raises ConfigurationError: no AMI configured
        """

        if count < 1:
            raise InvalidArgument('Invalid node count')

        if not self.config.get('ami'):
            raise ConfigurationError(
                '\'ami\' must be configured to launch EC2 instances')

        launch_request = LaunchRequest(group, count, init_action)
        launch_request.configDict = self.config
        launch_request.conn = self.getEC2Connection()
        launch_request.node_request_queue = init_node_request_queue(
            [node_identity(group, index) for index in range(1, count + 1)]
        )

        self.__launch_instances(launch_request)

        launched = [node_request
                    for node_request in launch_request.node_request_queue
                    if node_request['status'] == 'launched']
        if launched:
            self.__wait_for_instances(launch_request, launched)

        return self.__process_node_request_queue(launch_request)

    def __launch_instances(self, launch_request: LaunchRequest) -> None:
        count = launch_request.count

        self._logger.info(
            'Launching 1 instance' if count == 1 else
            'Launching {0} instances'.format(count))

        if not launch_request.configDict.get('securitygroup'):
            self._logger.warning(
                '\'securitygroup\' not configured. Default security group'
                ' will be used, which may not allow HTTP access'
            )

        launch_exception = None

        for node_request in launch_request.node_request_queue:
            if launch_exception is not None:
                # Halted after an earlier launch error
                node_request['status'] = 'error'
                node_request['error'] = launch_exception

                continue

            try:
                node_request['instance'] = self.__launchEC2(
                    launch_request, node_request['identity'])

                node_request['status'] = 'launched'
            except UpstreamError as exc:
                self._logger.exception(
                    'Error launching EC2 instance [{0}]'.format(
                        node_request['identity']))

                node_request['status'] = 'error'
                node_request['error'] = exc

                launch_exception = exc

    def __get_common_launch_args(self, configDict: Dict[str, Any],
                                 group: str, identity: str) \
            -> Dict[str, Any]:
        """
        Return key-value pairs of arguments for passing to launch API
        """

        args = {
            'InstanceType': configDict['instancetype'],
        }

        if configDict.get('keypair'):
            args['KeyName'] = configDict['keypair']

        if configDict.get('subnet_id'):
            # If "subnet_id" is defined, the instance belongs to a VPC.
            # Security groups are attached to the primary interface.
            args['NetworkInterfaces'] = [{
                'AssociatePublicIpAddress':
                    configDict['associate_public_ip_address'],
                'Groups': configDict.get('securitygroup') or [],
                'SubnetId': configDict['subnet_id'],
                'DeviceIndex': 0,
            }]
        elif configDict.get('securitygroup'):
            args['SecurityGroupIds'] = configDict['securitygroup']

        tag_dict_list = to_tag_specification(
            get_node_tags(group, identity, configDict.get('tags')))

        args['TagSpecifications'] = [
            {
                'ResourceType': 'instance',
                'Tags': tag_dict_list,
            },
            {
                'ResourceType': 'volume',
                'Tags': tag_dict_list,
            },
        ]

        return args

    def __launchEC2(self, launch_request: LaunchRequest, identity: str):
        """
        :raises UpstreamError:
        """

        runArgs = self.__get_common_launch_args(
            launch_request.configDict, launch_request.group, identity)

        if launch_request.init_action:
            runArgs['UserData'] = launch_request.init_action

        try:
            return launch_request.conn.create_instances(
                ImageId=launch_request.configDict['ami'],
                MinCount=1,
                MaxCount=1,
                **runArgs
            )[0]
        except (botocore.exceptions.ClientError,
                botocore.exceptions.BotoCoreError) as exc:
            raise UpstreamError('AWS error: {0}'.format(exc), cause=exc)

    def __aws_check_instance_state(self, instance) -> Optional[str]:
        try:
            instance.reload()
        except botocore.exceptions.ClientError as ex:
            # There is a race between creating an instance and polling
            # its status; a poll before EC2 registers the instance raises
            # "not found". Subsequent polls succeed.

            self._logger.debug(
                'Ignoring exception raised while updating instance: {0}'.format(
                    ex))

            return None

        return instance.state['Name']

    def process_item(self, launch_request: LaunchRequest,
                     node_request: dict) -> None:
        """
        Raises:
            UpstreamError
            OperationTimeoutError
        """

        max_sleep_time = 7000
        sleep_interval = 2000

        instance = node_request['instance']

        total_sleep_time = self.LAUNCH_INITIAL_SLEEP_TIME
        gevent.sleep(total_sleep_time)

        if self.__aws_check_instance_state(instance) == 'running':
            return

        for retries in itertools.count(1):
            temp = min(max_sleep_time, sleep_interval * 2 ** retries)

            sleeptime = (temp / 2 + random.randint(0, temp // 2)) / 1000.0

            self._logger.debug(
                'Sleeping %.2f seconds on instance [%s]' % (
                    sleeptime, instance.id))

            gevent.sleep(sleeptime)

            total_sleep_time += sleeptime

            state = self.__aws_check_instance_state(instance)

            if state == 'running':
                return

            if total_sleep_time >= launch_request.configDict['createtimeout']:
                raise OperationTimeoutError(
                    'Timeout waiting for instance [{0}]'.format(instance.id))

            if state is not None and state != 'pending':
                node_request['status'] = state

                self._logger.error(
                    'Instance [%s] in unexpected state [%s]' % (
                        instance.id, state))

                raise UpstreamError(
                    'Error launching instance: state=[{0}]'.format(state))

    def __failed_launch_cleanup_handler(self, node_request: dict) -> None:
        """
        Terminate an instance which did not reach running state within the
        create timeout period or reached an unexpected state.
        """

        self._logger.error(
            'Terminating failed instance [{0}]'.format(
                node_request['instance'].id))

        try:
            node_request['instance'].terminate()
        except botocore.exceptions.ClientError as exc:
            self._logger.warning(
                'Error while terminating instance [{0}]: {1}'.format(
                    node_request['instance'].id, exc))

    def __wait_for_instance_coroutine(
            self, launch_request: LaunchRequest,
            queue: gevent.queue.JoinableQueue) -> NoReturn:
        """
        Process one node request from queue
        """

        configDict = launch_request.configDict

        while True:
            node_request = queue.get()

            try:
                with gevent.Timeout(
                        configDict['launch_timeout'], TimeoutError):
                    self.process_item(launch_request, node_request)

                    self._logger.info(
                        'Instance [{0}] running'.format(
                            node_request['instance'].id))

                    node_request['status'] = 'running'
            except Exception as exc:  # pylint: disable=broad-except
                if isinstance(exc, (OperationTimeoutError, TimeoutError)):
                    logmsg = (
                        'Launch operation failed: timeout waiting for'
                        ' instance [{0}]'.format(node_request['identity']))

                    exc = OperationTimeoutError(logmsg)
                else:
                    logmsg = 'Instance launch failed: {0}'.format(str(exc))

                self._logger.error(logmsg)

                node_request['status'] = 'error'
                node_request['error'] = exc

                self.__failed_launch_cleanup_handler(node_request)
            finally:
                queue.task_done()

    def __wait_for_instances(self, launch_request: LaunchRequest,
                             node_requests: List[dict]) -> None:
        self._logger.info(
            'Waiting for {0} instance(s) in group [{1}]...'.format(
                len(node_requests), launch_request.group))

        queue = gevent.queue.JoinableQueue()

        workers = [
            gevent.spawn(
                self.__wait_for_instance_coroutine,
                launch_request,
                queue,
            )
            for _ in range(min(len(node_requests), self.MAX_LAUNCH_WORKERS))
        ]

        for node_request in node_requests:
            queue.put(node_request)

        queue.join()

        gevent.killall(workers)

    def __process_node_request_queue(self, launch_request: LaunchRequest) \
            -> Tuple[List[Node], Dict[str, Exception]]:
        succeeded: List[Node] = []
        failed: Dict[str, Exception] = {}

        for node_request in launch_request.node_request_queue:
            identity = node_request['identity']

            if node_request['status'] == 'running':
                succeeded.append(
                    self.__instance_to_node(
                        launch_request.group, identity,
                        node_request['instance']))

                continue

            failed[identity] = node_request.get('error') or UpstreamError(
                'Instance [{0}] failed to start: status=[{1}]'.format(
                    identity, node_request['status']))

        if succeeded and failed:
            self._logger.warning(
                'only %d of %d requested instances launched'
                ' successfully' % (len(succeeded), launch_request.count))

        return succeeded, failed

    def __instance_to_node(self, group: str, identity: str, instance) \
            -> Node:
        public_addresses = [instance.public_ip_address] \
            if instance.public_ip_address else []

        private_addresses = [instance.private_ip_address] \
            if instance.private_ip_address else []

        return Node(instance.id, identity, group,
                    public_addresses=public_addresses,
                    private_addresses=private_addresses,
                    state=instance.state['Name'])

    def destroy_matching(self, group: str) -> List[str]:
        """
        Terminate every instance tagged with the group

        :raises UpstreamError: unable to list instances
        """

        conn = self.getEC2Connection()

        try:
            instances = list(conn.instances.filter(Filters=[
                {
                    'Name': 'tag:{0}'.format(GROUP_TAG),
                    'Values': [group_tag_value(group)],
                },
                {
                    'Name': 'instance-state-name',
                    'Values': ['pending', 'running', 'stopping', 'stopped'],
                },
            ]))
        except (botocore.exceptions.ClientError,
                botocore.exceptions.BotoCoreError) as exc:
            raise UpstreamError(
                'Unable to list instances in group [{0}]: {1}'.format(
                    group, exc), cause=exc)

        self._logger.debug(
            'Deleting instances: [{0}]'.format(
                ' '.join([instance.id for instance in instances])))

        terminated = []

        for instance in instances:
            self._logger.info(
                'Terminating instance [{0}] in group [{1}]'.format(
                    instance.id, group))

            try:
                instance.terminate()
            except botocore.exceptions.ClientError as exc:
                self._logger.warning(
                    'Error while terminating instance [{0}]: {1}'.format(
                        instance.id, exc))

                continue

            terminated.append(instance.id)

        return terminated

    def close(self) -> None:
        """
        Release the EC2 connection created by this service. A connection
        passed in by the caller is left open.
        """

        if self.__conn is None or not self.__owns_conn:
            return

        self._logger.debug('Closing EC2 connection')

        self.__conn.meta.client.close()

        self.__conn = None
