# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Test environment machines configuration and tools for that.

The goal is to keep configuration in code under version control.
It serves as documentation for what is installed and configured.

Every action is formulated in terms of a command.
In most cases, it is a Run object, a small Command subclass
or an instance of CompositeCommand.
It is desirable that commands be written in the most raw form,
so that it is clear what is being run and it is easy to copy.

Commands must be idempotent.
The second run must not "accumulate" changes.
Running it multiple times must be safe.
A command tells whether it changed anything;
a raw Run cannot tell, so it always counts as a change.

Commands should not be executed directly. Only via a fleet.
This allows for reordering, logging, interaction with the user
and forces simpler commands that do not use results of each other,
which makes it easier to run them manually.
Values one command needs from another are derived from the configuration.

Linux hosts are SSH destinations, strings.
Windows hosts are WindowsAccess objects, see provisioning.windows.

Do not call SSH functions from provisioning scripts.

Do not call run methods of commands from provisioning scripts.
"""
from provisioning._config_files import LineInFile
from provisioning._config_files import ResolvConfHead
from provisioning._core import Command
from provisioning._core import CompositeCommand
from provisioning._core import Fleet
from provisioning._core import Run
from provisioning._files import EnsureDirectory
from provisioning._files import Synchronize
from provisioning._files import Template
from provisioning._files import Unarchive
from provisioning._packages import AptInstall
from provisioning._packages import AptKey
from provisioning._packages import AptRepository
from provisioning._packages import AptUpgrade
from provisioning._packages import ServiceEnabled
from provisioning._ssh import SSHCannotConnect
from provisioning._users import AddUserToGroup

__all__ = [
    'AddUserToGroup',
    'AptInstall',
    'AptKey',
    'AptRepository',
    'AptUpgrade',
    'Command',
    'CompositeCommand',
    'EnsureDirectory',
    'Fleet',
    'LineInFile',
    'ResolvConfHead',
    'Run',
    'SSHCannotConnect',
    'ServiceEnabled',
    'Synchronize',
    'Template',
    'Unarchive',
    ]
