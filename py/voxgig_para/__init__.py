# voxgig_para init

from .voxgig_para import (
    Callback,
    CastSpec,
    Embed,
    Field,
    InvalidError,
    Para,
    ParaError,
    ParaUtility,
    Schema,
    apply_changes,
    build_spec,
    callback,
    declare,
    embed_many,
    embed_one,
    optional,
    required,
    run,
    spec,
    traverse_errors,
    validate,
    validator
)

from .changeset import (
    Changeset,
    add_error,
    cast,
    cast_value,
    delete_change,
    get_change,
    get_field,
    put_change,
    validate_acceptance,
    validate_change,
    validate_confirmation,
    validate_exclusion,
    validate_format,
    validate_inclusion,
    validate_length,
    validate_number,
    validate_required,
    validate_subset
)


__all__ = [
    'Callback',
    'CastSpec',
    'Changeset',
    'Embed',
    'Field',
    'InvalidError',
    'Para',
    'ParaError',
    'ParaUtility',
    'Schema',
    'add_error',
    'apply_changes',
    'build_spec',
    'callback',
    'cast',
    'cast_value',
    'declare',
    'delete_change',
    'embed_many',
    'embed_one',
    'get_change',
    'get_field',
    'optional',
    'put_change',
    'required',
    'run',
    'spec',
    'traverse_errors',
    'validate',
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
    'validator',
]
