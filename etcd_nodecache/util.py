# -*- coding: utf-8 -*-
##
##  This file is part of etcNodeCache, a locally-cached view of a single
##  node that you tend to store in etcd.
##
##  etcNodeCache is Copyright © 2015 by Matthias Urlichs <matthias@urlichs.de>,
##  it is licensed under the GPLv3. See the file `README.rst` for details,
##  including optimistic statements by the author.
##
##  This program is free software: you can redistribute it and/or modify
##  it under the terms of the GNU General Public License as published by
##  the Free Software Foundation, either version 3 of the License, or
##  (at your option) any later version.
##
##  This program is distributed in the hope that it will be useful,
##  but WITHOUT ANY WARRANTY; without even the implied warranty of
##  MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
##  GNU General Public License (included; see the file LICENSE)
##  for more details.
##
##  This header is auto-generated and may self-destruct at any time,
##  courtesy of "make update". The original is in ‘scripts/_boilerplate.py’.
##  Thus, do not remove the next line, or insert any blank lines above.
##
import logging
logger = logging.getLogger(__name__)
##BP

import os
import yaml

# this reads our configuration from yaml

def from_yaml(path):
	with open(path) as f:
		return yaml.safe_load(f)

def load_cfg(cfg=None):
	"""\
		Return the configuration dict.

		@cfg may be a dict (returned as-is), a file name, or None, in
		which case $ETCD_CFG (or /etc/etcd_nodecache.cfg) is read.
		"""
	if cfg is None:
		cfg = os.environ.get("ETCD_CFG","/etc/etcd_nodecache.cfg")
	if not isinstance(cfg,dict):
		cfg = from_yaml(cfg)
	return cfg

def validate_path(path):
	"""\
		Check that @path is an absolute node path.

		Returns the path, raises ValueError if it's malformed.
		"""
	if not isinstance(path,str):
		raise ValueError("Path must be a string", path)
	if path == '/':
		return path
	if path == '' or path[0] != '/':
		raise ValueError("Path must start with a slash", path)
	if path[-1] == '/':
		raise ValueError("Path must not end with a slash", path)
	if '//' in path:
		raise ValueError("Path contains an empty segment", path)
	if '\0' in path:
		raise ValueError("Path contains a null character", path)
	return path

def split_path(path):
	"""'/a/b/c' => ('a','b','c')"""
	return tuple(k for k in path.split('/') if k != '')
