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
"""Types for Keystash"""

import os
from typing import Union, List, Dict, Optional, TypedDict

StrPath = Union[str, os.PathLike[str]]

# Blob name -> new content, or None to delete the blob
StagedBlobs = Dict[str, Optional[bytes]]

class RevisionRecord(TypedDict):
    """One revision of a keychain ref"""
    tree: Dict[str, str]
    parent: Optional[str]
    message: str
    author: str
    timestamp: str

class HistoryEntry(TypedDict):
    """A revision record together with its id, as reported by the log"""
    id: str
    parent: Optional[str]
    message: str
    author: str
    timestamp: str
    names: List[str]

class DeployedArtifact(TypedDict):
    """Result of deploying a keychain"""
    keychain: str
    target: str
    revision: str
    chained: List[str]
    content: bytes
    checksum: str
    path: str
