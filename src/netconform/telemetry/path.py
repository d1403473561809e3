"""Path manipulation utilities."""


import logging
import libyang
from netconform.lib.errors import InvalArgError


logger = logging.getLogger(__name__)

WILDCARD = "*"
DEFAULT_LIST_KEYS = ("name",)


def xpath_elems(xpath):
    """Split an xpath into its elements.

    Args:
        xpath (str): Absolute xpath. e.g. "/interfaces/interface[name='Ethernet1']/state/oper-status"

    Returns:
        list of tuple: (prefix, name, [(key, value), ...]) for each element.

    Raises:
        InvalArgError: xpath is malformed.
    """
    if not xpath.startswith("/"):
        raise InvalArgError(f"xpath must be absolute: {xpath}")
    try:
        return list(libyang.xpath_split(xpath))
    except ValueError as e:
        raise InvalArgError(f"invalid xpath {xpath}: {e}") from e


def gnmi_path_to_xpath(gnmi_path, prefix=None):
    """Render a gNMI Path as an xpath.

    Args:
        gnmi_path (gnmi_pb2.Path): Path. Only "elem" is used.
        prefix (gnmi_pb2.Path): Optional prefix of the path.

    Returns:
        str: Xpath with list keys sorted by name.
    """
    xpath = ""
    for path in (prefix, gnmi_path):
        if path is None:
            continue
        for elem in path.elem:
            xpath += f"/{elem.name}"
            if elem.key:
                for key in sorted(elem.key):
                    value = elem.key.get(key)
                    xpath += f"[{key}='{value}']"
    return xpath


class PathPattern:
    """An xpath whose list keys may be wildcards.

    "/interfaces/interface[name='*']/state/oper-status" matches the oper-status of every interface. Keys which are
    not given at all are wildcards too, as in gNMI. Module prefixes are compared only when both sides have one.
    """

    def __init__(self, xpath):
        self.xpath = xpath
        self._elems = xpath_elems(xpath)

    @property
    def list_keys(self):
        """dict: List node name to its key names, as given in the pattern."""
        return {name: [key for key, _ in keys] for _, name, keys in self._elems if keys}

    def _match_elems(self, elems):
        bindings = {}
        for (pprefix, pname, pkeys), (prefix, name, keys) in zip(self._elems, elems):
            if pname != name:
                return None
            if pprefix is not None and prefix is not None and pprefix != prefix:
                return None
            values = dict(keys)
            for key, pvalue in pkeys:
                value = values.get(key)
                if value is None:
                    return None
                if pvalue == WILDCARD:
                    bindings[key] = value
                elif pvalue != value:
                    return None
        return bindings

    def match(self, xpath):
        """Match a concrete xpath.

        Returns:
            dict: Values bound to the wildcard keys. None if the xpath does not match.
        """
        elems = xpath_elems(xpath)
        if len(elems) != len(self._elems):
            return None
        return self._match_elems(elems)

    def __repr__(self):
        return f"PathPattern({self.xpath!r})"


def _is_container(data):
    return isinstance(data, dict)


def _is_container_list(data):
    if isinstance(data, list):
        for elem in data:
            if isinstance(elem, dict):
                return True
    return False


def _path_with_keys(container, path, list_keys):
    name = path.split("/")[-1].split(":")[-1]
    keys = list_keys.get(name, DEFAULT_LIST_KEYS)
    keys_str = ""
    for key in keys:
        try:
            value = container[key]
        except KeyError as e:
            raise InvalArgError(f"list entry of {path} has no key {key}") from e
        keys_str = f"{keys_str}[{key}='{value}']"
    return f"{path}{keys_str}"


def _get_leaves(data, path, leaves, list_keys):
    if _is_container(data):
        for next_node, next_data in data.items():
            _get_leaves(next_data, f"{path}/{next_node}", leaves, list_keys)
    elif _is_container_list(data):
        for container in data:
            next_path = _path_with_keys(container, path, list_keys)
            _get_leaves(container, next_path, leaves, list_keys)
    else:
        leaves[path] = data


def leaves(data, path, list_keys=None):
    """Flatten a JSON data tree into leaves.

    Args:
        data (any): Data tree rooted at path, as decoded from a JSON value.
        path (str): Path of the root of the tree.
        list_keys (dict): List node name to its key names. Lists are keyed by "name" when not given.

    Returns:
        dict: Path to a leaf node to the value of the leaf.
    """
    result = {}
    _get_leaves(data, path, result, list_keys or {})
    return result
