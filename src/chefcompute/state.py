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

from .exceptions import InvalidStateTransition


RUN_STATE_INIT = 'INIT'
RUN_STATE_RUNLIST_SET = 'RUNLIST_SET'
RUN_STATE_BOOTSTRAPPED = 'BOOTSTRAPPED'
RUN_STATE_NODES_REQUESTED = 'NODES_REQUESTED'
RUN_STATE_VERIFIED = 'VERIFIED'
RUN_STATE_TORN_DOWN = 'TORN_DOWN'

RUN_STATES = (
    RUN_STATE_INIT,
    RUN_STATE_RUNLIST_SET,
    RUN_STATE_BOOTSTRAPPED,
    RUN_STATE_NODES_REQUESTED,
    RUN_STATE_VERIFIED,
    RUN_STATE_TORN_DOWN,
)


def check_transition(current: str, new: str) -> str:
    """
    Validate a run state transition and return the new state.

    A run only moves forward one step at a time, may repeat the step it is
    in, and may jump to TORN_DOWN from anywhere. TORN_DOWN is terminal.

    :raises InvalidStateTransition:
    """

    if new not in RUN_STATES:
        raise InvalidStateTransition('Unknown run state [{0}]'.format(new))

    if new == RUN_STATE_TORN_DOWN:
        return new

    if current != RUN_STATE_TORN_DOWN:
        index = RUN_STATES.index(current)

        if RUN_STATES.index(new) in (index, index + 1):
            return new

    raise InvalidStateTransition(
        'Invalid run state transition [{0}] -> [{1}]'.format(current, new))
