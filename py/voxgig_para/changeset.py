# Copyright (c) 2025 Voxgig Ltd. MIT LICENSE.
#
# Voxgig Para Changeset
# =====================
#
# Casting and validation primitives for Voxgig Para. A changeset holds
# the working state of a single validation: the base data (defaults),
# the declared types, the cast changes, and the errors. Every function
# here returns a new changeset and leaves its input untouched, so
# custom validators can be composed freely.
#
# Main utilities
# - cast: cast raw params into a changeset against a type map.
# - validate_required: flag fields that are missing or blank.
# - cast_value: coerce one raw value to a declared type.
#
# Named validators (run only when the field has a change)
# - validate_inclusion: value is one of a list.
# - validate_exclusion: value is not one of a list.
# - validate_subset: every element of a list value is one of a list.
# - validate_length: string, list or map size bounds.
# - validate_number: numeric comparisons.
# - validate_format: value matches a regular expression.
# - validate_acceptance: value is true.
# - validate_confirmation: value matches the <field>_confirmation param.
# - validate_change: run a custom (field, value) check.
#
# Minor utilities
# - get_change, get_field: read a change, or a change falling back to data.
# - put_change, delete_change: write or remove a change.
# - add_error: append an error and mark the changeset invalid.
# - normalize, strkey: normalize param keys to field names.
# - getprop, ismap, islist, isblank: value helpers.


from typing import *
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
import operator
import re

from pydantic import ConfigDict, TypeAdapter, ValidationError


# The standard undefined value for this language.
UNDEF = None

# Type names.
S_string = 'string'
S_integer = 'integer'
S_float = 'float'
S_boolean = 'boolean'
S_map = 'map'
S_array = 'array'
S_decimal = 'decimal'
S_date = 'date'
S_datetime = 'datetime'
S_time = 'time'
S_any = 'any'
S_embed = 'embed'

# Validation kinds, recorded in error metadata.
S_cast = 'cast'
S_required = 'required'
S_inclusion = 'inclusion'
S_exclusion = 'exclusion'
S_subset = 'subset'
S_length = 'length'
S_number = 'number'
S_format = 'format'
S_acceptance = 'acceptance'
S_confirmation = 'confirmation'

# Error messages.
S_MINVALID = 'is invalid'
S_MBLANK = "can't be blank"
S_MRESERVED = 'is reserved'
S_MSUBSET = 'has an invalid entry'
S_MFORMAT = 'has invalid format'
S_MACCEPT = 'must be accepted'
S_MCONFIRM = 'does not match confirmation'

# General strings.
S_MT = ''
S_message = 'message'
S_validation = 'validation'

# Raw values cast to None. Strings are also compared after stripping.
EMPTY_VALUES = (S_MT,)

_PYTYPES = {
    S_string: str,
    S_integer: int,
    S_float: float,
    S_boolean: bool,
    S_map: dict,
    S_decimal: Decimal,
    S_date: date,
    S_datetime: datetime,
    S_time: time,
    S_any: Any,
}

# TypeAdapter per canonical type. Adapters are immutable once built.
_ADAPTERS: Dict[Any, TypeAdapter] = {}

# Strings such as "inf" and "nan" are not numbers.
_CONFIG = ConfigDict(allow_inf_nan=False)

_LENGTH_MSGS = {
    (S_string, 'is'): 'should be %d character(s)',
    (S_string, 'min'): 'should be at least %d character(s)',
    (S_string, 'max'): 'should be at most %d character(s)',
    (S_array, 'is'): 'should have %d item(s)',
    (S_array, 'min'): 'should have at least %d item(s)',
    (S_array, 'max'): 'should have at most %d item(s)',
}

_NUMBER_CHECKS = {
    'less_than': (operator.lt, 'must be less than %s'),
    'greater_than': (operator.gt, 'must be greater than %s'),
    'less_than_or_equal_to': (operator.le, 'must be less than or equal to %s'),
    'greater_than_or_equal_to': (operator.ge, 'must be greater than or equal to %s'),
    'equal_to': (operator.eq, 'must be equal to %s'),
    'not_equal_to': (operator.ne, 'must be not equal to %s'),
}


class Changeset:
    """
    Working state of a single validation.

    Changes hold cast values that differ from the base data, or child
    changesets for embedded schemas. Errors are (field, (message, keys))
    pairs, in the order they were found. The changeset is valid while
    it has no errors and no invalid children.
    """
    def __init__(
        self,
        data: Dict[str, Any] = None,     # Base data (field defaults).
        types: Dict[str, Any] = None,    # Declared type per field.
        params: Any = None,              # Normalized raw params.
        changes: Dict[str, Any] = None,  # Cast values and child changesets.
        errors: List[Tuple[str, Tuple[str, Dict[str, Any]]]] = None,
        required: List[str] = None,      # Fields checked as required.
        valid: bool = True,              # No errors, and no invalid children.
        action: Any = None               # Action name, if any.
    ) -> None:
        self.data = data if data is not None else {}
        self.types = types if types is not None else {}
        self.params = params
        self.changes = changes if changes is not None else {}
        self.errors = errors if errors is not None else []
        self.required = required if required is not None else []
        self.valid = valid
        self.action = action

    def copy(self, **attrs: Any) -> 'Changeset':
        "Copy the changeset, replacing the given attributes."
        out = Changeset(
            data=dict(self.data),
            types=dict(self.types),
            params=self.params,
            changes=dict(self.changes),
            errors=list(self.errors),
            required=list(self.required),
            valid=self.valid,
            action=self.action,
        )
        for name, val in attrs.items():
            setattr(out, name, val)
        return out

    def __repr__(self) -> str:
        return (
            f"Changeset(valid={self.valid}, changes={self.changes!r}, "
            f"errors={self.errors!r}, data={self.data!r})"
        )


def ismap(val: Any = UNDEF) -> bool:
    "Value is a defined map (any mapping)."
    return isinstance(val, Mapping)


def islist(val: Any = UNDEF) -> bool:
    "Value is a defined list or tuple."
    return isinstance(val, (list, tuple))


def isblank(val: Any = UNDEF) -> bool:
    "Value is undefined, or a string of whitespace only."
    if val is UNDEF:
        return True
    return isinstance(val, str) and S_MT == val.strip()


def isempty_value(val: Any, empty_values: Any = EMPTY_VALUES) -> bool:
    "Raw value counts as missing when casting."
    if isinstance(val, str) and val.strip() in empty_values:
        return True
    return val in empty_values


def getprop(val: Any = UNDEF, key: Any = UNDEF, alt: Any = UNDEF) -> Any:
    """
    Safely get a property of a map. Undefined arguments return the
    alternative, as does a missing or undefined property.
    """
    if val is UNDEF or key is UNDEF or not ismap(val):
        return alt

    out = val.get(key, alt)

    if out is UNDEF:
        return alt

    return out


def strkey(key: Any = UNDEF) -> str:
    """
    Normalize a key to a field name. Enum members use their string
    value (or their name), integers use their decimal string. Anything
    else cannot be a name, and gives the empty string.
    """
    if key is UNDEF:
        return S_MT

    if isinstance(key, Enum):
        return key.value if isinstance(key.value, str) else key.name

    if isinstance(key, str):
        return key

    if isinstance(key, bool):
        return S_MT

    if isinstance(key, int):
        return str(key)

    return S_MT


def normalize(params: Any) -> Dict[str, Any]:
    """
    Normalize the keys of a params map with strkey. Keys that cannot be
    names are dropped. A plain string key wins over any other key that
    normalizes to the same name.
    """
    out = {}
    for key, val in params.items():
        skey = strkey(key)
        if S_MT == skey:
            continue
        plain = isinstance(key, str) and not isinstance(key, Enum)
        if plain or skey not in out:
            out[skey] = val
    return out


def typekey(vtype: Any) -> Any:
    """
    Canonical form of a declared type: a type name, or an
    (array, element-type) tuple. Raises ValueError for unknown types.
    """
    if isinstance(vtype, str):
        if vtype in _PYTYPES or S_array == vtype or S_embed == vtype:
            return vtype

    elif islist(vtype) and 2 == len(vtype) and S_array == vtype[0]:
        elemtype = typekey(vtype[1])
        if S_embed != elemtype:
            return (S_array, elemtype)

    raise ValueError(f"Unknown type: {vtype!r}")


def _pytype(tkey: Any) -> Any:
    if isinstance(tkey, tuple):
        return List[_pytype(tkey[1])]
    if S_array == tkey:
        return List[Any]
    return _PYTYPES[tkey]


def _adapter(tkey: Any) -> TypeAdapter:
    adapter = _ADAPTERS.get(tkey)
    if adapter is None:
        adapter = TypeAdapter(_pytype(tkey), config=_CONFIG)
        _ADAPTERS[tkey] = adapter
    return adapter


def cast_value(vtype: Any, val: Any) -> Tuple[bool, Any]:
    """
    Coerce a raw value to a declared type, using pydantic in lax mode,
    so that "20.00" casts to 20.0 for a float field. Returns
    (ok, value), where the value is undefined if the cast failed.
    Undefined stays undefined, and embed values pass through.
    """
    tkey = typekey(vtype)

    if val is UNDEF or S_embed == tkey:
        return True, val

    try:
        return True, _adapter(tkey).validate_python(val)
    except ValidationError:
        return False, UNDEF


def cast(
        data_types: Tuple[Dict[str, Any], Dict[str, Any]],
        params: Any,
        permitted: List[str],
        opts: Dict[str, Any] = None
) -> Changeset:
    """
    Cast params against a (data, types) pair. Only permitted keys that
    are present in params are cast; other keys are ignored. Values in
    opts.empty_values become None first. A failed cast adds an
    "is invalid" error, and casting carries on with the next key.
    """
    data, types = data_types

    if not ismap(params):
        raise ValueError(f"Expected params to be a map, but found: {params!r}")

    empty_values = getprop(opts, 'empty_values', EMPTY_VALUES)
    params = normalize(params)

    cs = Changeset(data=dict(data), types=dict(types), params=params)

    for key in permitted:
        if key not in params:
            continue

        vtype = types[key]
        if S_embed == vtype:
            continue

        val = params[key]
        if isempty_value(val, empty_values):
            val = UNDEF

        ok, val = cast_value(vtype, val)

        if not ok:
            cs.errors.append((key, (S_MINVALID, {'type': vtype, S_validation: S_cast})))
            cs.valid = False
        elif val != cs.data.get(key):
            cs.changes[key] = val

    return cs


def get_change(cs: Changeset, key: str, default: Any = UNDEF) -> Any:
    "Get the change for a field, if any."
    return cs.changes.get(key, default)


def get_field(cs: Changeset, key: str, default: Any = UNDEF) -> Any:
    "Get the change for a field, falling back to its base data."
    if key in cs.changes:
        return cs.changes[key]
    return cs.data.get(key, default)


def put_change(cs: Changeset, key: str, val: Any) -> Changeset:
    "Put a change. A value equal to the base data removes the change."
    out = cs.copy()
    if val == out.data.get(key):
        out.changes.pop(key, None)
    else:
        out.changes[key] = val
    return out


def delete_change(cs: Changeset, key: str) -> Changeset:
    "Remove the change for a field."
    out = cs.copy()
    out.changes.pop(key, None)
    return out


def add_error(cs: Changeset, key: str, message: str, **keys: Any) -> Changeset:
    "Add an error on a field, with optional metadata keys."
    out = cs.copy()
    out.errors.append((key, (message, keys)))
    out.valid = False
    return out


def validate_required(cs: Changeset, fields: Any, opts: Dict[str, Any] = None) -> Changeset:
    """
    Add a "can't be blank" error to every field whose value, after
    changes, is undefined or a blank string. A single name may be
    given in place of a list.
    """
    fields = [fields] if isinstance(fields, str) else list(fields)
    message = getprop(opts, S_message, S_MBLANK)

    out = cs.copy(required=cs.required + [f for f in fields if f not in cs.required])

    for field in fields:
        if isblank(get_field(out, field)):
            out = add_error(out, field, message, **{S_validation: S_required})

    return out


def validate_change(cs: Changeset, field: str, validator: Callable) -> Changeset:
    """
    Run validator(field, value) when the field has a non-None change.
    The validator returns a list of errors, each either
    (field, message) or (field, (message, keys)). An empty list means
    the value is valid.
    """
    val = get_change(cs, field)
    if val is UNDEF:
        return cs

    out = cs
    for ekey, emsg in validator(field, val) or []:
        message, keys = emsg if isinstance(emsg, tuple) else (emsg, {})
        out = add_error(out, ekey, message, **keys)

    return out


def validate_inclusion(cs: Changeset, field: str, data: Any, opts: Dict[str, Any] = None) -> Changeset:
    "The value must be one of the given data."
    message = getprop(opts, S_message, S_MINVALID)

    def check(key, val):
        if val in data:
            return []
        return [(key, (message, {S_validation: S_inclusion, 'enum': list(data)}))]

    return validate_change(cs, field, check)


def validate_exclusion(cs: Changeset, field: str, data: Any, opts: Dict[str, Any] = None) -> Changeset:
    "The value must not be one of the given data."
    message = getprop(opts, S_message, S_MRESERVED)

    def check(key, val):
        if val not in data:
            return []
        return [(key, (message, {S_validation: S_exclusion, 'enum': list(data)}))]

    return validate_change(cs, field, check)


def validate_subset(cs: Changeset, field: str, data: Any, opts: Dict[str, Any] = None) -> Changeset:
    "Every element of the list value must be one of the given data."
    message = getprop(opts, S_message, S_MSUBSET)

    def check(key, val):
        if islist(val) and all(elem in data for elem in val):
            return []
        return [(key, (message, {S_validation: S_subset, 'enum': list(data)}))]

    return validate_change(cs, field, check)


def validate_length(cs: Changeset, field: str, opts: Dict[str, Any]) -> Changeset:
    """
    Bound the length of a value: characters for strings, items for
    lists and maps. Options: is, min, max, message. The first failing
    bound, in that order, is reported.
    """
    def check(key, val):
        if isinstance(val, str):
            kind = S_string
        elif islist(val) or ismap(val):
            kind = S_array
        else:
            return []

        count = len(val)
        for bound in ('is', 'min', 'max'):
            limit = getprop(opts, bound)
            if limit is UNDEF:
                continue
            failed = (
                ('is' == bound and count != limit) or
                ('min' == bound and count < limit) or
                ('max' == bound and count > limit)
            )
            if failed:
                message = getprop(opts, S_message, _LENGTH_MSGS[(kind, bound)] % limit)
                return [(key, (message, {
                    S_validation: S_length,
                    'kind': bound,
                    'count': limit,
                    'type': S_string if S_string == kind else 'list',
                }))]
        return []

    return validate_change(cs, field, check)


def validate_number(cs: Changeset, field: str, opts: Dict[str, Any]) -> Changeset:
    """
    Compare a numeric value. Options: less_than, greater_than,
    less_than_or_equal_to, greater_than_or_equal_to, equal_to,
    not_equal_to, message. The first failing comparison is reported.
    """
    for name in opts:
        if S_message != name and name not in _NUMBER_CHECKS:
            raise ValueError(f"Unknown option for validate_number: {name}")

    def check(key, val):
        if isinstance(val, bool) or not isinstance(val, (int, float, Decimal)):
            raise ValueError(f"Expected field {key} to be a number, but found: {val!r}")

        for name, target in opts.items():
            if S_message == name:
                continue
            compare, template = _NUMBER_CHECKS[name]
            if not compare(val, target):
                message = getprop(opts, S_message, template % target)
                return [(key, (message, {S_validation: S_number, 'kind': name, 'number': target}))]
        return []

    return validate_change(cs, field, check)


def validate_format(cs: Changeset, field: str, pattern: Any, opts: Dict[str, Any] = None) -> Changeset:
    "The string value must match the pattern (searched, not anchored)."
    message = getprop(opts, S_message, S_MFORMAT)
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern

    def check(key, val):
        if isinstance(val, str) and regex.search(val):
            return []
        return [(key, (message, {S_validation: S_format}))]

    return validate_change(cs, field, check)


def validate_acceptance(cs: Changeset, field: str, opts: Dict[str, Any] = None) -> Changeset:
    "The value must be true, as for a terms-of-service checkbox."
    message = getprop(opts, S_message, S_MACCEPT)

    def check(key, val):
        if True is val:
            return []
        return [(key, (message, {S_validation: S_acceptance}))]

    return validate_change(cs, field, check)


def validate_confirmation(cs: Changeset, field: str, opts: Dict[str, Any] = None) -> Changeset:
    """
    The value must equal the <field>_confirmation param, cast to the
    type of the field. The error is added on the confirmation key. With
    opts.required the confirmation param must also be present.
    """
    message = getprop(opts, S_message, S_MCONFIRM)
    confkey = field + '_confirmation'

    def check(key, val):
        confirm = getprop(cs.params, confkey)
        if confirm is UNDEF:
            if getprop(opts, 'required', False):
                return [(confkey, (S_MBLANK, {S_validation: S_required}))]
            return []
        ok, confirm = cast_value(cs.types.get(key, S_any), confirm)
        if not ok or confirm != val:
            return [(confkey, (message, {S_validation: S_confirmation}))]
        return []

    return validate_change(cs, field, check)


__all__ = [
    'Changeset',
    'add_error',
    'cast',
    'cast_value',
    'delete_change',
    'get_change',
    'get_field',
    'put_change',
    'validate_acceptance',
    'validate_change',
    'validate_confirmation',
    'validate_exclusion',
    'validate_format',
    'validate_inclusion',
    'validate_length',
    'validate_number',
    'validate_required',
    'validate_subset',
]
