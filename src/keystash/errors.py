#!/usr/bin/env python3
# Copyright 2023 Cisco Systems, Inc. and its affiliates
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0
"""Exceptions raised by Keystash operations"""

__all__ = ["KeystashError", "NotFound", "PreconditionFailed", "ValidationFailed", "AccessDenied"]

class KeystashError(Exception):
    """Base class for all errors reported to the operator. exit_code is the
    process exit status the command line tool uses for this error."""
    exit_code = 1

class NotFound(KeystashError):
    """A keychain, blob, account or file does not exist."""
    exit_code = 3

class PreconditionFailed(KeystashError):
    """The operation was refused before anything was written, e.g. a dirty
    working tree or an attempt to chain a keychain to itself."""
    exit_code = 4

class ValidationFailed(KeystashError):
    """Content is not a well-formed public key."""
    exit_code = 5

class AccessDenied(KeystashError):
    """A source could not be read or a destination could not be written."""
    exit_code = 6
