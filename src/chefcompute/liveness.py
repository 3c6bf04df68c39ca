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
HTTP liveness checks against provisioned nodes
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

import gevent
import gevent.queue
import requests

from .nodes import Node


DEFAULT_EXPECTED_CONTENT = 'It works!'
DEFAULT_TIMEOUT = 30
DEFAULT_CONCURRENCY = 10

logger = logging.getLogger('chefcompute.liveness')


def node_url(node: Node) -> Optional[str]:
    address = node.primary_address
    if address is None:
        return None

    return 'http://{0}/'.format(address)


def check_node(node: Node, expected_content: str, timeout: float,
               http_get: Callable = requests.get) -> Optional[str]:
    """
    Returns reason the node failed its check, or None on success
    """

    url = node_url(node)
    if url is None:
        return 'node has no public address'

    logger.debug('Checking node [%s] at [%s]', node.name, url)

    # requests is not cooperative; the hub threadpool runs it alongside
    # other checks and the wait below bounds the whole request
    result = gevent.get_hub().threadpool.spawn(http_get, url, timeout=timeout)

    try:
        response = result.get(timeout=timeout)
        response.raise_for_status()
    except (gevent.Timeout, requests.exceptions.Timeout):
        return 'timeout after {0}s waiting for {1}'.format(timeout, url)
    except requests.exceptions.RequestException as exc:
        return 'request to {0} failed: {1}'.format(url, exc)

    if expected_content in response.text:
        return None

    return '[{0}] not found in response from {1}'.format(
        expected_content, url)


def check_nodes(nodes: Sequence[Node],
                expected_content: str = DEFAULT_EXPECTED_CONTENT,
                timeout: float = DEFAULT_TIMEOUT,
                concurrency: int = DEFAULT_CONCURRENCY,
                http_get: Callable = requests.get) \
        -> List[Tuple[Node, str]]:
    """
    Check every node and return (node, reason) for each failure, in the
    order the nodes were given.
    """

    if not nodes:
        return []

    results = {}

    queue = gevent.queue.JoinableQueue()

    def worker():
        while True:
            index, node = queue.get()

            try:
                results[index] = check_node(
                    node, expected_content, timeout, http_get=http_get)
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception('Error checking node [%s]', node.name)

                results[index] = 'check failed: {0}'.format(exc)
            finally:
                queue.task_done()

    workers = [gevent.spawn(worker)
               for _ in range(max(1, min(len(nodes), concurrency)))]

    for item in enumerate(nodes):
        queue.put(item)

    queue.join()

    gevent.killall(workers)

    return [(node, results[index])
            for index, node in enumerate(nodes)
            if results[index] is not None]
