
# RUN: python -m unittest discover -s tests -k changeset

import unittest
from datetime import date
from decimal import Decimal

from voxgig_para import (
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
    validate_subset,
)


DATA = {'name': None, 'price': None, 'qty': 1, 'tags': None}
TYPES = {'name': 'string', 'price': 'float', 'qty': 'integer', 'tags': ['array', 'string']}
PERMITTED = ['name', 'price', 'qty', 'tags']


def changed(**changes):
    return cast((DATA, TYPES), changes, PERMITTED)


def messages(cs):
    return [(field, message) for field, (message, _keys) in cs.errors]


class TestChangeset(unittest.TestCase):

    # cast
    # ====

    def test_cast_basic(self):
        cs = cast((DATA, TYPES), {'name': 'iPod', 'price': '20.00', 'extra': 'x'}, PERMITTED)
        self.assertTrue(cs.valid)
        self.assertEqual({'name': 'iPod', 'price': 20.0}, cs.changes)
        self.assertEqual(DATA, cs.data)
        self.assertEqual([], cs.errors)


    def test_cast_only_permitted(self):
        cs = cast((DATA, TYPES), {'name': 'iPod', 'price': '1'}, ['name'])
        self.assertEqual({'name': 'iPod'}, cs.changes)


    def test_cast_unchanged(self):
        # A value equal to the base data is not a change.
        cs = changed(qty='1')
        self.assertEqual({}, cs.changes)
        self.assertEqual(1, get_field(cs, 'qty'))


    def test_cast_empty(self):
        cs = changed(name='', qty='  ')
        self.assertTrue(cs.valid)
        self.assertEqual({'qty': None}, cs.changes)

        cs = cast((DATA, TYPES), {'name': '-'}, PERMITTED, {'empty_values': ('', '-')})
        self.assertEqual({}, cs.changes)


    def test_cast_errors(self):
        cs = changed(price='cheap', qty='many', tags='x', name='ok')
        self.assertFalse(cs.valid)
        self.assertEqual({'name': 'ok'}, cs.changes)
        self.assertEqual([
            ('price', ('is invalid', {'type': 'float', 'validation': 'cast'})),
            ('qty', ('is invalid', {'type': 'integer', 'validation': 'cast'})),
            ('tags', ('is invalid', {'type': ['array', 'string'], 'validation': 'cast'})),
        ], cs.errors)


    def test_cast_not_a_map(self):
        with self.assertRaises(ValueError):
            cast((DATA, TYPES), ['name'], PERMITTED)


    def test_cast_value(self):
        self.assertEqual((True, 20.0), cast_value('float', '20.00'))
        self.assertEqual((True, Decimal('1.50')), cast_value('decimal', '1.50'))
        self.assertEqual((True, date(2024, 1, 31)), cast_value('date', '2024-01-31'))
        self.assertEqual((True, ['a', 'b']), cast_value(('array', 'string'), ('a', 'b')))
        self.assertEqual((True, None), cast_value('integer', None))
        self.assertEqual((False, None), cast_value('integer', 'x'))
        self.assertEqual((False, None), cast_value('boolean', 'maybe'))

        # Infinities and NaN are not accepted as numbers.
        self.assertEqual((False, None), cast_value('float', 'inf'))
        self.assertEqual((False, None), cast_value('float', 'nan'))
        self.assertEqual((False, None), cast_value('float', float('inf')))
        self.assertEqual((False, None), cast_value('decimal', 'NaN'))

        val = {'a': 1}
        self.assertIs(val, cast_value('embed', val)[1])

        with self.assertRaises(ValueError):
            cast_value('widget', 1)


    # accessors
    # =========

    def test_changes(self):
        cs = changed(name='iPod')
        self.assertEqual('iPod', get_change(cs, 'name'))
        self.assertEqual(None, get_change(cs, 'qty'))
        self.assertEqual('alt', get_change(cs, 'qty', 'alt'))
        self.assertEqual(1, get_field(cs, 'qty'))
        self.assertEqual('alt', get_field(cs, 'missing', 'alt'))

        out = put_change(cs, 'qty', 2)
        self.assertEqual(2, get_change(out, 'qty'))
        self.assertEqual(None, get_change(cs, 'qty'))

        out = put_change(out, 'qty', 1)
        self.assertNotIn('qty', out.changes)

        out = delete_change(cs, 'name')
        self.assertEqual({}, out.changes)
        self.assertEqual({'name': 'iPod'}, cs.changes)


    def test_add_error(self):
        cs = changed(name='iPod')
        out = add_error(cs, 'name', 'is taken', validation='unique')
        self.assertTrue(cs.valid)
        self.assertFalse(out.valid)
        self.assertEqual([('name', ('is taken', {'validation': 'unique'}))], out.errors)
        self.assertEqual([], cs.errors)


    def test_copy(self):
        cs = Changeset(data={'a': 1}, changes={'a': 2})
        out = cs.copy(action='update')
        out.changes['a'] = 3
        self.assertEqual({'a': 2}, cs.changes)
        self.assertEqual('update', out.action)
        self.assertIsNone(cs.action)


    # validators
    # ==========

    def test_validate_required(self):
        cs = validate_required(changed(name=' ', qty='2'), ['name', 'price', 'qty'])
        self.assertEqual([('name', "can't be blank"), ('price', "can't be blank")], messages(cs))
        self.assertEqual(['name', 'price', 'qty'], cs.required)

        cs = validate_required(changed(), 'name', {'message': 'is required'})
        self.assertEqual([('name', 'is required')], messages(cs))

        # Defaults satisfy a required field.
        self.assertTrue(validate_required(changed(), 'qty').valid)


    def test_validate_inclusion(self):
        cs = changed(name='desktop')
        self.assertTrue(validate_inclusion(cs, 'name', ['desktop', 'laptop']).valid)

        out = validate_inclusion(cs, 'name', ['mobile', 'laptop'])
        self.assertEqual([('name', ('is invalid', {
            'validation': 'inclusion', 'enum': ['mobile', 'laptop']}))], out.errors)

        # Only changes are checked.
        self.assertTrue(validate_inclusion(changed(), 'qty', [5]).valid)


    def test_validate_exclusion(self):
        cs = changed(name='admin')
        self.assertEqual([('name', 'is reserved')],
                         messages(validate_exclusion(cs, 'name', ['admin', 'root'])))
        self.assertTrue(validate_exclusion(cs, 'name', ['root']).valid)


    def test_validate_subset(self):
        cs = changed(tags=['a', 'b'])
        self.assertTrue(validate_subset(cs, 'tags', ['a', 'b', 'c']).valid)
        self.assertEqual([('tags', 'has an invalid entry')],
                         messages(validate_subset(cs, 'tags', ['a'])))


    def test_validate_length(self):
        cs = changed(name='iPod', tags=['a', 'b', 'c'])

        self.assertTrue(validate_length(cs, 'name', {'min': 2, 'max': 4}).valid)
        self.assertEqual([('name', 'should be 3 character(s)')],
                         messages(validate_length(cs, 'name', {'is': 3})))
        self.assertEqual([('name', 'should be at most 3 character(s)')],
                         messages(validate_length(cs, 'name', {'max': 3})))
        self.assertEqual([('tags', 'should have at least 4 item(s)')],
                         messages(validate_length(cs, 'tags', {'min': 4})))

        out = validate_length(cs, 'tags', {'max': 2, 'message': 'too many'})
        self.assertEqual([('tags', ('too many', {
            'validation': 'length', 'kind': 'max', 'count': 2, 'type': 'list'}))], out.errors)


    def test_validate_number(self):
        cs = changed(price='20.00')
        self.assertTrue(validate_number(cs, 'price', {'greater_than': 0, 'less_than': 100}).valid)
        self.assertEqual([('price', 'must be less than 10')],
                         messages(validate_number(cs, 'price', {'less_than': 10})))
        self.assertEqual([('price', 'must be greater than or equal to 50')],
                         messages(validate_number(cs, 'price', {'greater_than_or_equal_to': 50})))

        with self.assertRaises(ValueError):
            validate_number(cs, 'price', {'between': 1})

        with self.assertRaises(ValueError):
            validate_number(changed(name='x'), 'name', {'less_than': 1})


    def test_validate_format(self):
        cs = changed(name='ABC-123')
        self.assertTrue(validate_format(cs, 'name', r'\d+').valid)
        self.assertEqual([('name', 'has invalid format')],
                         messages(validate_format(cs, 'name', r'^\d+$')))


    def test_validate_acceptance(self):
        types = {'terms': 'boolean'}
        cs = cast(({'terms': None}, types), {'terms': 'true'}, ['terms'])
        self.assertTrue(validate_acceptance(cs, 'terms').valid)

        cs = cast(({'terms': None}, types), {'terms': 'false'}, ['terms'])
        self.assertEqual([('terms', 'must be accepted')], messages(validate_acceptance(cs, 'terms')))


    def test_validate_confirmation(self):
        data = {'password': None}
        types = {'password': 'string'}

        cs = cast((data, types), {'password': 'abc', 'password_confirmation': 'abc'}, ['password'])
        self.assertTrue(validate_confirmation(cs, 'password').valid)

        cs = cast((data, types), {'password': 'abc', 'password_confirmation': 'xyz'}, ['password'])
        self.assertEqual([('password_confirmation', 'does not match confirmation')],
                         messages(validate_confirmation(cs, 'password')))

        cs = cast((data, types), {'password': 'abc'}, ['password'])
        self.assertTrue(validate_confirmation(cs, 'password').valid)
        self.assertEqual([('password_confirmation', "can't be blank")],
                         messages(validate_confirmation(cs, 'password', {'required': True})))


    def test_validate_confirmation_typed(self):
        # The confirmation is cast to the field type before comparing.
        data = {'pin': None, 'amount': None}
        types = {'pin': 'integer', 'amount': 'float'}
        permitted = ['pin', 'amount']

        cs = cast((data, types), {'pin': '1234', 'pin_confirmation': '1234'}, permitted)
        self.assertTrue(validate_confirmation(cs, 'pin').valid)

        cs = cast((data, types), {'amount': '2.50', 'amount_confirmation': '2.5'}, permitted)
        self.assertTrue(validate_confirmation(cs, 'amount').valid)

        cs = cast((data, types), {'pin': '1234', 'pin_confirmation': '4321'}, permitted)
        self.assertEqual([('pin_confirmation', 'does not match confirmation')],
                         messages(validate_confirmation(cs, 'pin')))

        cs = cast((data, types), {'pin': '1234', 'pin_confirmation': 'abcd'}, permitted)
        self.assertEqual([('pin_confirmation', 'does not match confirmation')],
                         messages(validate_confirmation(cs, 'pin')))


    def test_validate_change(self):
        def check(field, val):
            if val.startswith('i'):
                return [(field, 'is lower case'), (field, ('is short', {'count': len(val)}))]
            return []

        cs = validate_change(changed(name='iPod'), 'name', check)
        self.assertEqual([
            ('name', ('is lower case', {})),
            ('name', ('is short', {'count': 4})),
        ], cs.errors)

        self.assertTrue(validate_change(changed(name='Pod'), 'name', check).valid)
        self.assertTrue(validate_change(changed(), 'name', check).valid)


if __name__ == "__main__":
    unittest.main()
