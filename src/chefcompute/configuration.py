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

import configparser
import logging
import os.path
import re
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional

from pydantic import Field, SecretStr, ValidationError, field_validator, \
    model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .exceptions import ConfigurationError
from .helpers import is_blank, parse_cfg_tags


ENV_PREFIX = 'CHEFCOMPUTE_'
DEFAULT_CONFIG_SECTION = 'chefcompute'

REQUIRED_SETTINGS = ('chef_endpoint', 'chef_identity')

# setting -> settings which must also be configured when it is set
SETTING_REQUIRES = {
    'compute_identity': ('compute_credential',),
    'compute_credential': ('compute_identity',),
    'associate_public_ip_address': ('subnet_id',),
    'proxy_host': ('proxy_port',),
    'proxy_port': ('proxy_host',),
    'proxy_user': ('proxy_host',),
    'proxy_pass': ('proxy_user',),
}

TAG_KEY_REGEX = re.compile(r'^(?!aws:).{1,127}$')
TAG_VALUE_REGEX = re.compile(r'^.{0,255}$')

logger = logging.getLogger('chefcompute.configuration')


class ProvisioningConfig(BaseSettings):
    """
    Validated provisioning settings.

    Values passed explicitly take precedence over ``CHEFCOMPUTE_<SETTING>``
    environment variables. Item access (``config['region']``,
    ``config.get('ami')``) is supported so the services can consume it
    like a plain configuration dict.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra='forbid',
    )

    #
    # Compute
    #
    group: str = Field(
        default='jcloudschef',
        description='Name tagging every node and client registration'
                    ' created during a provisioning run')
    compute_provider: Literal['aws-ec2'] = 'aws-ec2'
    count: int = Field(default=1, ge=1,
                       description='Number of nodes to request')
    ami: Optional[str] = Field(
        default=None,
        description='AMI ID to use for launching node instances')
    instancetype: str = 't2.micro'
    region: str = 'us-east-1'
    tags: Annotated[Dict[str, str], NoDecode] = Field(
        default_factory=dict,
        description='A space-separated list of tags in the form of'
                    ' key=value')
    launch_timeout: int = Field(
        default=300, gt=0,
        description='Wait time (in seconds) for a single instance to'
                    ' reach running state')
    createtimeout: int = Field(
        default=900, gt=0,
        description='Wait time (in seconds) for instance launch(es) to'
                    ' complete')

    #
    # Authentication
    #
    compute_identity: Optional[str] = Field(
        default=None, description='Access key ID for the compute provider')
    compute_credential: Optional[SecretStr] = Field(
        default=None,
        description='Secret access key for the compute provider')
    keypair: Optional[str] = Field(
        default=None,
        description='Name of SSH keypair to install on new nodes')

    #
    # Chef
    #
    chef_endpoint: Optional[str] = None
    chef_identity: Optional[str] = None
    chef_credential_file: Optional[str] = Field(
        default=None,
        description='Path to the PEM-encoded private key of the Chef'
                    ' client. Defaults to ~/.chef/<chef_identity>.pem')
    client_name: Optional[str] = Field(
        default=None, description='Client registration deleted on teardown')
    stale_threshold: int = Field(
        default=1, ge=0,
        description='Registrations idle for more than this many'
                    ' generations are purged on teardown')

    #
    # Networking
    #
    securitygroup: Annotated[Optional[List[str]], NoDecode] = Field(
        default=None,
        description='Comma-separated security group(s) for new nodes.'
                    ' Must allow inbound HTTP for liveness checks.')
    subnet_id: Optional[str] = None
    associate_public_ip_address: bool = True

    #
    # API
    #
    compute_endpoint: Optional[str] = Field(
        default=None,
        description='Compute API endpoint; provider default when unset')
    proxy_host: Optional[str] = None
    proxy_port: Optional[int] = Field(default=None, ge=1, le=65535)
    proxy_user: Optional[str] = None
    proxy_pass: Optional[SecretStr] = None

    #
    # Verification
    #
    expected_content: str = Field(
        default='It works!',
        description='Marker expected in the HTTP response of every node')
    liveness_timeout: int = Field(
        default=30, gt=0,
        description='Wait time (in seconds) for each node to answer')
    liveness_concurrency: int = Field(
        default=10, ge=1,
        description='Maximum number of nodes checked at once')

    @field_validator('tags', mode='before')
    @classmethod
    def parse_tags(cls, value: Any) -> Any:
        if value is None:
            return {}

        tags = parse_cfg_tags(value) if isinstance(value, str) \
            else dict(value)

        for tag_key, tag_value in tags.items():
            if not TAG_KEY_REGEX.match(tag_key):
                raise ValueError('Invalid tag key [{0}]'.format(tag_key))

            if not TAG_VALUE_REGEX.match(str(tag_value)):
                raise ValueError(
                    'Invalid value for tag [{0}]'.format(tag_key))

        return tags

    @field_validator('securitygroup', mode='before')
    @classmethod
    def parse_securitygroup(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(',')
                     if item.strip()]

        return value or None

    @field_validator('chef_credential_file')
    @classmethod
    def expand_credential_file(cls, value: Optional[str]) \
            -> Optional[str]:
        return os.path.expanduser(value) if value else value

    @model_validator(mode='after')
    def check_requires(self) -> 'ProvisioningConfig':
        # only settings configured by the user bring their requirements
        for key, required_keys in SETTING_REQUIRES.items():
            if key not in self.model_fields_set or \
                    getattr(self, key) is None:
                continue

            for required_key in required_keys:
                if getattr(self, required_key) is None:
                    raise ValueError(
                        'Setting [{0}] requires [{1}]'.format(
                            key, required_key))

        if self.chef_credential_file is None and self.chef_identity:
            self.chef_credential_file = os.path.join(
                os.path.expanduser('~'), '.chef',
                '{0}.pem'.format(self.chef_identity))

        return self

    def __getitem__(self, key: str) -> Any:
        if key not in type(self).model_fields:
            raise KeyError(key)

        return getattr(self, key)

    def get(self, key: str, default: Any = None) -> Any:
        if key not in type(self).model_fields:
            return default

        return getattr(self, key)

    def dump(self) -> Dict[str, Any]:
        """Returns printable settings with secrets masked"""
        return self.model_dump(mode='json', exclude_none=True)


def load_config(values: Optional[Mapping[str, Any]] = None,
                check_required: bool = True) -> ProvisioningConfig:
    """
    Validate raw setting values, layered over the environment, and apply
    defaults.

    Blank string values are treated as not set; a blank compute endpoint
    therefore means the provider default endpoint.

    :raises ConfigurationError:
    """

    provided = {
        key: value for key, value in (values or {}).items()
        if value is not None and
        not (isinstance(value, str) and is_blank(value))
    }

    try:
        config = ProvisioningConfig(**provided)
    except ValidationError as exc:
        raise ConfigurationError(
            'Invalid configuration: {0}'.format('; '.join(
                '{0}: {1}'.format(
                    '.'.join(str(item) for item in error['loc']) or
                    'settings', error['msg'])
                for error in exc.errors())))

    if check_required:
        missing = [key for key in REQUIRED_SETTINGS
                   if getattr(config, key) is None]
        if missing:
            raise ConfigurationError(
                'Missing required setting(s): {0}'.format(
                    ', '.join(missing)))

    logger.debug('Loaded configuration: %s', config.dump())

    return config


def read_config_file(path: str,
                     section: str = DEFAULT_CONFIG_SECTION) \
        -> Dict[str, str]:
    """
    Returns raw setting values from one section of an INI file

    :raises ConfigurationError: file or section not found
    """

    if not os.path.exists(path):
        raise ConfigurationError(
            'Configuration file [{0}] not found'.format(path))

    cfg = configparser.ConfigParser()

    try:
        cfg.read(path)
    except configparser.Error as exc:
        raise ConfigurationError(
            'Unable to parse configuration file [{0}]: {1}'.format(
                path, exc))

    if not cfg.has_section(section):
        raise ConfigurationError(
            'Section [{0}] not found in configuration file [{1}]'.format(
                section, path))

    return dict(cfg.items(section))


def load_config_from_file(path: str,
                          section: str = DEFAULT_CONFIG_SECTION,
                          check_required: bool = True) \
        -> ProvisioningConfig:
    return load_config(read_config_file(path, section),
                       check_required=check_required)
