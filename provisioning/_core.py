# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import os
from abc import ABCMeta
from abc import abstractmethod
from typing import Any
from typing import Collection
from typing import Sequence

from provisioning._ssh import ssh


class Command(metaclass=ABCMeta):

    @abstractmethod
    def run(self, host) -> bool:
        """Bring host to the state; return whether anything changed."""
        pass


class Run(Command):
    """Raw shell command on a Linux host.

    The outcome cannot be known, so it always counts as a change.
    """

    def __init__(self, command: str):
        self._command = command

    def __repr__(self):
        return f'{Run.__name__}({self._command!r})'

    def run(self, host: str):
        ssh(host, self._command)
        return True


class CompositeCommand(Command):

    def __init__(self, commands: Sequence[Command]):
        self._commands: Sequence[Command] = commands

    def __repr__(self):
        return f'<{self.__class__.__name__} with {len(self._commands)} commands>'

    def run(self, host):
        changed = False
        for command in self._commands:
            changed = command.run(host) or changed
        return changed


class Fleet:
    """Hosts the commands are applied to, one by one, in order."""

    def __init__(self, hosts: Collection[Any]):
        self._hosts = hosts

    def __repr__(self):
        return f'{Fleet.__name__}({list(self._hosts)!r})'

    def run(self, commands: Sequence[Command]) -> int:
        """Run commands; return how many of them changed something."""
        changed_count = 0
        for host in self._hosts:
            questionnaire = Questionnaire("Run on")
            for command in commands:
                _logger.info("%s: command %r", host, command)
                if not questionnaire.user_agrees_with(host):
                    _logger.info("%s: %r: skipped", host, command)
                    continue
                if command.run(host):
                    changed_count += 1
                    _logger.info("%s: %r: changed", host, command)
                else:
                    _logger.info("%s: %r: ok", host, command)
        _logger.info("%r: %d of %d commands changed something", self, changed_count, len(commands))
        return changed_count


class Questionnaire:

    def __init__(self, prompt):
        self._user_agrees = None
        self._should_ask_user = True
        self._prompt = prompt

    def user_agrees_with(self, question):
        if not os.getenv('PROVISIONING_ASK_FOR_CONFIRMATION', ''):
            return True
        prompt = f"{self._prompt} {question} [y,n,a,d]? "
        if not self._should_ask_user:
            print(prompt + ('a' if self._user_agrees else 'd'), flush=True)
            return self._user_agrees
        while True:
            answer = input(prompt)[:1].lower()
            if answer in ('y', 'a'):
                self._user_agrees = True
            elif answer in ('n', 'd'):
                self._user_agrees = False
            else:
                continue
            self._should_ask_user = answer in ('y', 'n')
            return self._user_agrees


_logger = logging.getLogger(__name__)
