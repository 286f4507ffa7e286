# Copyright (c) 2025 Voxgig Ltd. MIT LICENSE.
#
# Voxgig Para
# ===========
#
# Declarative parameter casting and validation. A schema is an ordered
# list of field and embed declarations, with an optional callback. Raw
# params (string keys or other normalizable keys, extra keys allowed)
# are cast against the schema and validated. The result is either a
# typed record, or the changeset holding the complete error tree.
#
# Main utilities
# - validate: cast and validate params against a schema.
# - spec: compile the cast specification for a schema and params.
# - declare: build a schema from plain data, such as parsed JSON.
# - apply_changes: produce the typed record of a valid changeset.
# - traverse_errors: render the error tree of a changeset as plain data.
#
# Schema authoring
# - required, optional: field declarations.
# - embed_one, embed_many: nested schema declarations.
# - callback: a final hook over the whole changeset.
# - validator: collect declarations into a schema.
# - Para: base class registering schemas per action name.
#
# Pipeline, per schema level
# - build_spec: drop absent droppable fields, fold the rest into a CastSpec.
# - changeset.cast: coerce permitted params to their types.
# - changeset.validate_required: flag missing or blank required fields.
# - cast_embeds: run the whole pipeline again for each embedded schema.
# - apply_inline_validators: per-field validators, library first.
# - apply_callback: the schema's callback, once, last.


from typing import *
from types import MappingProxyType
import copy
import inspect
import logging

from . import changeset
from .changeset import (
    Changeset,
    EMPTY_VALUES,
    S_MBLANK,
    S_MINVALID,
    S_MT,
    S_embed,
    S_map,
    S_required,
    S_validation,
    UNDEF,
    getprop,
    isempty_value,
    islist,
    ismap,
    normalize,
    strkey,
    typekey,
)


log = logging.getLogger(__name__)

# Result tags.
S_ok = 'ok'
S_error = 'error'

# Declaration kinds.
S_optional = 'optional'
S_callback = 'callback'
S_embed_one = 'embed_one'
S_embed_many = 'embed_many'

# Embed cardinality.
S_one = 'one'
S_many = 'many'

# General strings.
S_string = changeset.S_string
S_DT = '.'

_FIELD_OPTS = ('default', 'validator', 'droppable')
_EMBED_OPTS = ('required', 'droppable')


class ParaError(ValueError):
    """
    A schema, or a function supplied by a schema, broke the contract
    of the engine. This is a defect in the schema, not bad input.
    """


class InvalidError(ValueError):
    "Params failed validation. The changeset holds the error tree."

    def __init__(self, cs: Changeset) -> None:
        self.changeset = cs
        super().__init__("Invalid data: " + " | ".join(_errmsgs(cs, [])))


class Field(NamedTuple):
    "A single field declaration."
    kind: str                  # required or optional.
    name: str
    type: Any = S_string       # Canonical type, see changeset.typekey.
    default: Any = UNDEF
    validator: Any = UNDEF     # Inline validator reference.
    droppable: bool = False    # Drop the field when its key is absent.


class Embed(NamedTuple):
    "A nested schema declaration, single (one) or repeated (many)."
    kind: str                  # required or optional.
    name: str
    cardinality: str           # one or many.
    schema: 'Schema'
    droppable: bool = False


class Callback(NamedTuple):
    "The final hook of a schema: a function name, or a callable."
    name: Any


class Schema(NamedTuple):
    "Ordered field and embed declarations, plus at most one callback."
    blocks: Tuple[Any, ...]
    callback: Any = UNDEF


class CastSpec:
    """
    Compiled cast specification for one schema level and one set of
    params. Built fresh for every call, since droppable fields depend
    on the params.
    """
    def __init__(self) -> None:
        self.defaults: Dict[str, Any] = {}      # Default value per field.
        self.types: Dict[str, Any] = {}         # Type per field, embed for embeds.
        self.permitted: List[str] = []          # Fields to cast, in declaration order.
        self.required: List[str] = []           # Required plain fields.
        self.validators: Dict[str, Any] = {}    # Inline validator per field.
        self.embeds: Dict[str, Embed] = {}      # Embed declaration per field.

    def put_field(self, field: Field) -> 'CastSpec':
        self.defaults[field.name] = copy.deepcopy(field.default)
        self.types[field.name] = field.type
        self.permitted.append(field.name)
        if S_required == field.kind:
            self.required.append(field.name)
        if field.validator is not UNDEF:
            self.validators[field.name] = field.validator
        return self

    def put_embed(self, embed: Embed) -> 'CastSpec':
        self.defaults[embed.name] = UNDEF
        self.types[embed.name] = S_embed
        self.permitted.append(embed.name)
        self.embeds[embed.name] = embed
        return self

    def __repr__(self) -> str:
        return (
            f"CastSpec(defaults={self.defaults!r}, types={self.types!r}, "
            f"permitted={self.permitted!r}, required={self.required!r}, "
            f"validators={self.validators!r}, embeds={list(self.embeds)!r})"
        )


# Schema authoring
# ================

def required(
        name: Any,
        type: Any = S_string,
        default: Any = UNDEF,
        validator: Any = UNDEF,
        droppable: bool = False
) -> Field:
    """
    Define a required field. It must be present and not blank after
    casting.

    Options:
    - default: value used when the field is absent from the params.
    - validator: a built-in or custom inline validator, given as
      'name', ('name', arg), ('name', arg, opts), or a callable.
    - droppable: drop the field entirely when its key is absent from
      the params. Useful for partial updates, where only submitted
      fields should be checked.

    A custom inline validator receives the changeset and the field
    name, plus any declared arguments, and always returns a changeset:

        @staticmethod
        def validate_country(cs, field):
            ...
            return cs
    """
    return _field(S_required, name, type, default, validator, droppable)


def optional(
        name: Any,
        type: Any = S_string,
        default: Any = UNDEF,
        validator: Any = UNDEF,
        droppable: bool = False
) -> Field:
    "Define an optional field. Options are as for `required`."
    return _field(S_optional, name, type, default, validator, droppable)


def embed_one(name: Any, blocks: Any, required: bool = False, droppable: bool = False) -> Embed:
    "Define a single nested object, validated against its own declarations."
    return _embed(S_one, name, blocks, required, droppable)


def embed_many(name: Any, blocks: Any, required: bool = False, droppable: bool = False) -> Embed:
    "Define a list of nested objects, each validated independently."
    return _embed(S_many, name, blocks, required, droppable)


def callback(name: Any) -> Callback:
    """
    Define the schema callback, run once after all other validation
    as fn(cs, params) with the original params. It returns the final
    changeset.
    """
    if not callable(name) and (not isinstance(name, str) or S_MT == name):
        raise ParaError(f"Invalid callback: {name!r}")
    return Callback(name)


def validator(*blocks: Any) -> Schema:
    """
    Collect field, embed, and callback declarations into a schema.
    Field names must be unique, and at most one callback is allowed.
    """
    fields = []
    names = set()
    cb = UNDEF

    for block in blocks:
        if isinstance(block, Callback):
            if cb is not UNDEF:
                raise ParaError("A schema can only have one callback.")
            cb = block.name

        elif isinstance(block, (Field, Embed)):
            if block.name in names:
                raise ParaError(f"Duplicate field: {block.name}")
            names.add(block.name)
            fields.append(block)

        else:
            raise ParaError(f"Invalid declaration: {block!r}")

    return Schema(tuple(fields), cb)


def declare(data: Any) -> Schema:
    """
    Build a schema from plain data, such as parsed JSON. Each entry is
    a list:

        ["required", "name", "string", {"droppable": true}]
        ["optional", "price", "float", {"default": 0.0}]
        ["embed_many", "items", [...entries...], {"required": true}]
        ["callback", "check_totals"]

    The type and options are optional for fields. A type may be a list,
    as in ["array", "integer"]. Validators use the list forms
    ["validate_inclusion", ["a", "b"]].
    """
    if not islist(data):
        raise ParaError(f"Expected a list of declarations, but found: {data!r}")
    return validator(*[_declare_entry(entry) for entry in data])


def _declare_entry(entry: Any) -> Any:
    if not islist(entry) or 0 == len(entry):
        raise ParaError(f"Invalid declaration: {entry!r}")

    kind = entry[0]
    name = _getelem(entry, 1)

    if kind in (S_required, S_optional):
        opts = _declare_opts(entry, _getelem(entry, 3, {}), _FIELD_OPTS)
        return _field(
            kind,
            name,
            _getelem(entry, 2, S_string),
            getprop(opts, 'default'),
            getprop(opts, 'validator'),
            getprop(opts, 'droppable', False),
        )

    elif kind in (S_embed_one, S_embed_many):
        opts = _declare_opts(entry, _getelem(entry, 3, {}), _EMBED_OPTS)
        return _embed(
            S_one if S_embed_one == kind else S_many,
            name,
            declare(_getelem(entry, 2, [])),
            getprop(opts, 'required', False),
            getprop(opts, 'droppable', False),
        )

    elif S_callback == kind:
        return callback(name)

    raise ParaError(f"Unknown declaration kind: {kind!r}")


def _declare_opts(entry: Any, opts: Any, known: Tuple[str, ...]) -> Dict[str, Any]:
    if not ismap(opts):
        raise ParaError(f"Invalid options in declaration: {entry!r}")
    unknown = [key for key in opts if key not in known]
    if 0 < len(unknown):
        raise ParaError(f"Unknown options in declaration {entry!r}: {', '.join(map(str, unknown))}")
    return opts


def _getelem(val: Any, index: int, alt: Any = UNDEF) -> Any:
    return val[index] if index < len(val) else alt


def _name(name: Any) -> str:
    skey = strkey(name)
    if S_MT == skey:
        raise ParaError(f"Invalid field name: {name!r}")
    return skey


def _field(kind: str, name: Any, vtype: Any, default: Any, validator: Any, droppable: bool) -> Field:
    name = _name(name)

    try:
        vtype = typekey(vtype)
    except ValueError as err:
        raise ParaError(f"Invalid type for field {name}: {err}") from err

    if S_embed == vtype:
        raise ParaError(f"Use embed_one or embed_many for field {name}.")

    if validator is not UNDEF:
        _validatorref(name, validator)

    return Field(kind, name, vtype, default, validator, bool(droppable))


def _embed(cardinality: str, name: Any, blocks: Any, isrequired: bool, droppable: bool) -> Embed:
    name = _name(name)

    if isinstance(blocks, Schema):
        schema = blocks
    elif islist(blocks):
        schema = validator(*blocks)
    else:
        raise ParaError(f"Invalid declarations for embed {name}: {blocks!r}")

    kind = S_required if isrequired else S_optional
    return Embed(kind, name, cardinality, schema, bool(droppable))


def _schema(schema: Any) -> Schema:
    if isinstance(schema, Schema):
        return schema
    if islist(schema):
        if all(isinstance(block, (Field, Embed, Callback)) for block in schema):
            return validator(*schema)
        return declare(schema)
    raise ParaError(f"Invalid schema: {schema!r}")


# Spec builder
# ============

def discard_droppable(blocks: Tuple[Any, ...], params: Dict[str, Any]) -> List[Any]:
    "Remove droppable declarations whose key is absent from the (normalized) params."
    out = []
    for block in blocks:
        if block.droppable and block.name not in params:
            log.debug("Dropped field %s", block.name)
            continue
        out.append(block)
    return out


def build_spec(schema: Schema, params: Dict[str, Any]) -> CastSpec:
    """
    Fold the declarations that survive droppable filtering into a
    CastSpec. The params must already be normalized.
    """
    spec = CastSpec()
    for block in discard_droppable(schema.blocks, params):
        if isinstance(block, Embed):
            spec.put_embed(block)
        else:
            spec.put_field(block)
    return spec


def spec(schema: Any, params: Any) -> CastSpec:
    "Compile the cast specification for a schema and params, without validating."
    return build_spec(_schema(schema), _params(params))


def _params(params: Any) -> Dict[str, Any]:
    if not ismap(params):
        raise ParaError(f"Expected params to be a map, but found: {params!r}")
    return normalize(params)


# Embed resolver
# ==============

def cast_embeds(
        cs: Changeset,
        module: Any,
        spec: CastSpec,
        params: Dict[str, Any],
        opts: Dict[str, Any] = None
) -> Changeset:
    """
    Run the whole pipeline for each embed field, and store the child
    changesets as changes. An invalid child invalidates the parent,
    but every embed, and every element of an embed_many, is evaluated.
    """
    empty_values = getprop(opts, 'empty_values', EMPTY_VALUES)

    for name, embed in spec.embeds.items():
        raw = params.get(name, UNDEF)
        if raw is not UNDEF and isempty_value(raw, empty_values):
            raw = UNDEF

        if S_one == embed.cardinality:
            cs = _cast_one(cs, module, embed, raw, opts)
        else:
            cs = _cast_many(cs, module, embed, raw, opts)

    return cs


def _cast_one(cs: Changeset, module: Any, embed: Embed, raw: Any, opts: Dict[str, Any]) -> Changeset:
    if raw is UNDEF:
        return _missing_embed(cs, embed)

    if not ismap(raw):
        return _invalid_embed(cs, embed)

    child = run(module, embed.schema, raw, opts)
    return _put_embed(cs, embed.name, child, child.valid)


def _cast_many(cs: Changeset, module: Any, embed: Embed, raw: Any, opts: Dict[str, Any]) -> Changeset:
    if not islist(raw):
        return _missing_embed(cs, embed)

    if 0 == len(raw) and S_required == embed.kind:
        return _missing_embed(cs, embed)

    children = [
        run(module, embed.schema, item, opts) if ismap(item) else _invalid_item(item)
        for item in raw
    ]
    return _put_embed(cs, embed.name, children, all(child.valid for child in children))


def _invalid_item(item: Any) -> Changeset:
    # The error is on the element itself, not on any of its fields.
    return changeset.add_error(
        Changeset(params=item), S_MT, S_MINVALID, type=S_map, **{S_validation: S_embed})


def _put_embed(cs: Changeset, name: str, val: Any, valid: bool) -> Changeset:
    out = changeset.put_change(cs, name, val)
    out.valid = out.valid and valid
    return out


def _missing_embed(cs: Changeset, embed: Embed) -> Changeset:
    if S_required == embed.kind:
        return changeset.add_error(cs, embed.name, S_MBLANK, **{S_validation: S_required})
    return cs


def _invalid_embed(cs: Changeset, embed: Embed) -> Changeset:
    return changeset.add_error(cs, embed.name, S_MINVALID, type=S_map, **{S_validation: S_embed})


# Inline validators and callback
# ==============================

def apply_inline_validators(cs: Changeset, module: Any, validators: Dict[str, Any]) -> Changeset:
    "Apply each field's inline validator, in declaration order."
    for key, ref in validators.items():
        cs = apply_inline_validator(cs, module, key, ref)
    return cs


def apply_inline_validator(cs: Changeset, module: Any, key: str, ref: Any) -> Changeset:
    function, args = _validatorref(key, ref)
    out = do_apply_inline_validator(module, function, [cs, key] + args)
    return _checked(out, function)


def do_apply_inline_validator(module: Any, function: Any, args: List[Any]) -> Any:
    """
    Call a validator. A name resolves to the changeset library function
    when the library exports one that accepts the arguments, and to the
    function of the same name on the schema module otherwise.
    """
    if callable(function):
        return function(*args)

    libfn = getattr(changeset, function) if function in changeset.__all__ else UNDEF

    if inspect.isfunction(libfn) and _accepts(libfn, args):
        log.debug("Validator %s/%d from library", function, len(args))
        return libfn(*args)

    fn = getattr(module, function, UNDEF)
    if not callable(fn):
        raise ParaError(f"Undefined validator: {function}/{len(args)}")

    log.debug("Validator %s/%d from %s", function, len(args), _fname(module))
    return fn(*args)


def apply_callback(cs: Changeset, module: Any, callback: Any, params: Any) -> Changeset:
    "Apply the schema callback, if any, with the original params."
    if callback is UNDEF:
        return cs

    fn = callback if callable(callback) else getattr(module, callback, UNDEF)
    if not callable(fn):
        raise ParaError(f"Undefined callback: {callback}")

    return _checked(fn(cs, params), callback)


def _validatorref(key: str, ref: Any) -> Tuple[Any, List[Any]]:
    if callable(ref) or (isinstance(ref, str) and S_MT != ref):
        return ref, []

    if islist(ref) and 2 <= len(ref) <= 3:
        function = ref[0]
        if callable(function) or (isinstance(function, str) and S_MT != function):
            return function, list(ref[1:])

    raise ParaError(f"Invalid validator for field {key}: {ref!r}")


def _accepts(fn: Callable, args: List[Any]) -> bool:
    try:
        inspect.signature(fn).bind(*args)
    except TypeError:
        return False
    return True


def _checked(cs: Any, function: Any) -> Changeset:
    if not isinstance(cs, Changeset):
        raise ParaError(f"Function {_fname(function)} must return a changeset, but returned: {cs!r}")
    return cs


def _fname(val: Any) -> str:
    return val if isinstance(val, str) else getattr(val, '__name__', repr(val))


# Validation
# ==========

def run(module: Any, schema: Schema, params: Any, opts: Dict[str, Any] = None) -> Changeset:
    """
    Run the whole pipeline for one schema level and return the final
    changeset, valid or not. Embeds recurse through here, with their
    own spec and changeset.
    """
    nparams = _params(params)
    spec = build_spec(schema, nparams)

    cs = changeset.cast((spec.defaults, spec.types), nparams, spec.permitted, opts)
    cs = changeset.validate_required(cs, spec.required)
    cs = cast_embeds(cs, module, spec, nparams, opts)
    cs = apply_inline_validators(cs, module, spec.validators)
    cs = apply_callback(cs, module, schema.callback, params)

    return cs


def validate(module: Any, schema: Any, params: Any, opts: Dict[str, Any] = None) -> Tuple[str, Any]:
    """
    Cast and validate params against a schema. Returns ('ok', record)
    when the params are valid, and ('error', changeset) otherwise, with
    the changeset holding every error found. Custom validators and the
    callback are looked up by name on module (a class, a module, or any
    object).
    """
    cs = run(module, _schema(schema), params, opts)
    log.debug("Validated %s: valid=%s", _fname(module), cs.valid)

    if cs.valid:
        return S_ok, apply_changes(cs)

    return S_error, cs


def apply_changes(cs: Changeset) -> Dict[str, Any]:
    """
    Produce the typed record of a changeset: the base data overlaid by
    the changes, with child changesets applied recursively.
    """
    out = dict(cs.data)
    for key, val in cs.changes.items():
        if isinstance(val, Changeset):
            out[key] = apply_changes(val)
        elif islist(val) and all(isinstance(child, Changeset) for child in val):
            out[key] = [apply_changes(child) for child in val]
        else:
            out[key] = val
    return out


def traverse_errors(cs: Changeset, msgfunc: Callable = UNDEF) -> Any:
    """
    Render the error tree of a changeset as plain data: a list of
    messages per field, a nested map for an invalid embed_one child,
    and a list with one entry per element for an embed_many field with
    any invalid element. Valid elements render as empty maps, and an
    element that is not a map renders as its list of messages. Use
    msgfunc(message, keys) to format messages.
    """
    out: Dict[str, Any] = {}

    for key, (message, keys) in cs.errors:
        out.setdefault(key, []).append(message if msgfunc is UNDEF else msgfunc(message, keys))

    for key, val in cs.changes.items():
        nested = UNDEF
        if isinstance(val, Changeset):
            if not val.valid:
                nested = traverse_errors(val, msgfunc)
        elif islist(val) and any(isinstance(child, Changeset) and not child.valid for child in val):
            nested = [traverse_errors(child, msgfunc) for child in val]

        if nested is not UNDEF:
            out[key] = out[key] + [nested] if key in out else nested

    return out.get(S_MT, out)


def pathify(path: List[Any]) -> str:
    "Dotted path of field names and list indexes."
    return S_DT.join(str(part) for part in path)


def _errmsgs(cs: Changeset, path: List[Any]) -> List[str]:
    msgs = [
        f"{pathify(path + ([] if S_MT == key else [key]))} {message}"
        for key, (message, _keys) in cs.errors
    ]
    for key, val in cs.changes.items():
        if isinstance(val, Changeset):
            msgs += _errmsgs(val, path + [key])
        elif islist(val):
            for index, child in enumerate(val):
                if isinstance(child, Changeset):
                    msgs += _errmsgs(child, path + [key, index])
    return msgs


# Schema classes
# ==============

class Para:
    """
    Base class for parameter schemas. Each class attribute holding a
    schema defines an action:

        class ProductPara(Para):
            create = validator(
                required('name'),
                required('price', 'float'),
                optional('category', validator=('validate_inclusion', ['mobile', 'laptop'])),
            )

        ProductPara.validate('create', {'name': 'iPod', 'price': '20.00'})
        # ('ok', {'name': 'iPod', 'price': 20.0, 'category': None})

    Custom inline validators and callbacks are functions defined on the
    class (usually static methods), looked up by name.
    """

    # Raw values treated as missing when casting.
    empty_values: Tuple[Any, ...] = EMPTY_VALUES

    _schemas: Mapping[str, Schema] = MappingProxyType({})

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        schemas = {}
        for klass in reversed(cls.__mro__):
            for name, val in vars(klass).items():
                if isinstance(val, Schema):
                    schemas[name] = val
        cls._schemas = MappingProxyType(schemas)

    @classmethod
    def actions(cls) -> List[str]:
        "Names of the actions defined by this schema class."
        return list(cls._schemas)

    @classmethod
    def schema(cls, action: Any) -> Schema:
        schema = cls._schemas.get(strkey(action), UNDEF)
        if schema is UNDEF:
            raise ParaError(f"Unknown action for {cls.__name__}: {action!r}")
        return schema

    @classmethod
    def validate(cls, action: Any, params: Any) -> Tuple[str, Any]:
        "Validate params for an action: ('ok', record) or ('error', changeset)."
        return validate(cls, cls.schema(action), params, cls._opts())

    @classmethod
    def validate_or_raise(cls, action: Any, params: Any) -> Dict[str, Any]:
        "Validate params for an action, returning the record or raising InvalidError."
        status, out = cls.validate(action, params)
        if S_ok != status:
            raise InvalidError(out)
        return out

    @classmethod
    def changeset(cls, action: Any, params: Any) -> Changeset:
        "Run the pipeline for an action, and return the final changeset."
        cs = run(cls, cls.schema(action), params, cls._opts())
        cs.action = strkey(action)
        return cs

    @classmethod
    def spec(cls, action: Any, params: Any) -> CastSpec:
        "The cast specification for an action and params."
        return spec(cls.schema(action), params)

    @classmethod
    def _opts(cls) -> Dict[str, Any]:
        return {'empty_values': cls.empty_values}


# Create a ParaUtility class with all utility functions as attributes
class ParaUtility:
    def __init__(self):
        self.apply_changes = apply_changes
        self.build_spec = build_spec
        self.callback = callback
        self.cast = changeset.cast
        self.cast_value = changeset.cast_value
        self.declare = declare
        self.embed_many = embed_many
        self.embed_one = embed_one
        self.normalize = normalize
        self.optional = optional
        self.pathify = pathify
        self.required = required
        self.run = run
        self.spec = spec
        self.strkey = strkey
        self.traverse_errors = traverse_errors
        self.typekey = typekey
        self.validate = validate
        self.validator = validator


__all__ = [
    'Callback',
    'CastSpec',
    'Embed',
    'Field',
    'InvalidError',
    'Para',
    'ParaError',
    'ParaUtility',
    'Schema',
    'apply_callback',
    'apply_changes',
    'apply_inline_validators',
    'build_spec',
    'callback',
    'cast_embeds',
    'declare',
    'discard_droppable',
    'embed_many',
    'embed_one',
    'optional',
    'pathify',
    'required',
    'run',
    'spec',
    'traverse_errors',
    'validate',
    'validator',
]
