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

import posixpath
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .exceptions import InvalidArgument


class RunListBuilder(object):
    """
    Build a Chef run-list of recipes and roles, in order
    """

    def __init__(self) -> None:
        self.__items: List[str] = []

    def __add(self, item: str) -> 'RunListBuilder':
        if item not in self.__items:
            self.__items.append(item)

        return self

    def add_recipe(self, recipe: str) -> 'RunListBuilder':
        if not recipe:
            raise InvalidArgument('Recipe name must not be empty')

        return self.__add('recipe[{0}]'.format(recipe))

    def add_recipes(self, *recipes: str) -> 'RunListBuilder':
        for recipe in recipes:
            self.add_recipe(recipe)

        return self

    def add_role(self, role: str) -> 'RunListBuilder':
        if not role:
            raise InvalidArgument('Role name must not be empty')

        return self.__add('role[{0}]'.format(role))

    def build(self) -> List[str]:
        return list(self.__items)


class CookbookVersion(object):
    def __init__(self, cookbook_name: str, version: str,
                 recipes: Optional[Iterable[str]] = None) -> None:
        self.cookbook_name = cookbook_name
        self.version = version
        self.recipes = list(recipes or [])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CookbookVersion':
        """
        Parse the JSON document returned by the Chef server for a
        cookbook version
        """

        recipes = [
            item['name'] if isinstance(item, dict) else item
            for item in data.get('recipes', [])
        ]

        return cls(data['cookbook_name'], data.get('version', '0.0.0'),
                   recipes=recipes)

    @property
    def recipe_names(self) -> List[str]:
        # 'recipes/mod_proxy.rb' and 'mod_proxy.rb' both name 'mod_proxy'
        return [posixpath.splitext(posixpath.basename(recipe))[0]
                for recipe in self.recipes]

    def __repr__(self):
        return '<CookbookVersion {0}-{1}>'.format(
            self.cookbook_name, self.version)


def split_recipe(recipe: str) -> Tuple[str, str]:
    """Split 'cookbook::recipe' into its parts; bare names mean 'default'"""
    if recipe.startswith('recipe[') and recipe.endswith(']'):
        recipe = recipe[len('recipe['):-1]

    cookbook, _, name = recipe.partition('::')

    return cookbook, name or 'default'


def contains_recipe(recipe: str) -> Callable[[CookbookVersion], bool]:
    return contains_recipes(recipe)


def contains_recipes(*recipes: str) -> Callable[[CookbookVersion], bool]:
    """
    Returns predicate matching a cookbook version which provides every
    one of the named recipes
    """

    wanted = [split_recipe(recipe) for recipe in recipes]

    def predicate(cookbook_version: CookbookVersion) -> bool:
        names = cookbook_version.recipe_names

        return bool(wanted) and all(
            cookbook == cookbook_version.cookbook_name and name in names
            for cookbook, name in wanted
        )

    return predicate


def any_cookbook(cookbook_versions: Iterable[CookbookVersion],
                 predicate: Callable[[CookbookVersion], bool]) -> bool:
    return any(predicate(cookbook_version)
               for cookbook_version in cookbook_versions)
