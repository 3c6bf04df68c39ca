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

from typing import Dict, Optional


class ChefComputeException(Exception):
    """
    Base class for all chefcompute errors
    """

    error_code = 1

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message)

        self.message = message

    def __str__(self):
        return self.message or self.__class__.__name__


class ConfigurationError(ChefComputeException):
    error_code = 2


class InvalidArgument(ChefComputeException):
    error_code = 3


class InvalidStateTransition(ChefComputeException):
    error_code = 4


class UpstreamError(ChefComputeException):
    """
    Remote service call failed (network, authentication, server error)
    """

    error_code = 10

    def __init__(self, message: Optional[str] = None,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message)

        self.cause = cause


class PolicyMismatch(ChefComputeException):
    """
    Read-back after a write does not match what was requested
    """

    error_code = 11

    def __init__(self, expected, actual) -> None:
        super().__init__(
            'run-list mismatch: requested {0}, read back {1}'.format(
                expected, actual))

        self.expected = expected
        self.actual = actual


class PartialProvisioning(ChefComputeException):
    error_code = 12

    def __init__(self, nodeset) -> None:
        super().__init__(
            'only {0} of {1} requested nodes started; failed: {2}'.format(
                len(nodeset.succeeded), len(nodeset),
                ', '.join(sorted(nodeset.failed.keys()))))

        self.nodeset = nodeset


class VerificationError(ChefComputeException):
    """
    A provisioned node failed its liveness check

    ``node`` is the first failing node; ``failures`` maps the name of every
    failing node to the reason it failed.
    """

    error_code = 13

    def __init__(self, node, reason: str,
                 failures: Optional[Dict[str, str]] = None) -> None:
        super().__init__(
            'node [{0}] failed verification: {1}'.format(node.name, reason))

        self.node = node
        self.reason = reason
        self.failures = failures or {node.name: reason}


class OperationTimeoutError(ChefComputeException):
    error_code = 14
