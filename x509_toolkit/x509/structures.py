"""
ASN.1 structure definitions used when encoding by hand.

asn1crypto's own typed classes look OIDs up in fixed registries and refuse
algorithms they do not know (PKCS#3 DH, custom extensions). These
definitions keep OIDs and parameters opaque so any value can be carried.
"""
from asn1crypto import core, x509 as asn1_x509


class AlgorithmIdentifier(core.Sequence):
    _fields = [
        ('algorithm', core.ObjectIdentifier),
        ('parameters', core.Any, {'optional': True}),
    ]


class SubjectPublicKeyInfo(core.Sequence):
    _fields = [
        ('algorithm', AlgorithmIdentifier),
        ('subject_public_key', core.OctetBitString),
    ]


class PrivateKeyAttributes(core.SetOf):
    _child_spec = core.Any


class PrivateKeyInfo(core.Sequence):
    _fields = [
        ('version', core.Integer),
        ('private_key_algorithm', AlgorithmIdentifier),
        ('private_key', core.OctetString),
        ('attributes', PrivateKeyAttributes, {'implicit': 0, 'optional': True}),
    ]


class RsaPublicKey(core.Sequence):
    _fields = [
        ('modulus', core.Integer),
        ('public_exponent', core.Integer),
    ]


class DsaParameters(core.Sequence):
    _fields = [
        ('p', core.Integer),
        ('q', core.Integer),
        ('g', core.Integer),
    ]


class DhParameters(core.Sequence):
    """PKCS#3 DHParameter."""

    _fields = [
        ('p', core.Integer),
        ('g', core.Integer),
        ('private_value_length', core.Integer, {'optional': True}),
    ]


class X942DhParameters(core.Sequence):
    """X9.42 DomainParameters, read only."""

    _fields = [
        ('p', core.Integer),
        ('g', core.Integer),
        ('q', core.Integer),
        ('j', core.Integer, {'optional': True}),
        ('validation_params', core.Any, {'optional': True}),
    ]


class Extension(core.Sequence):
    _fields = [
        ('extn_id', core.ObjectIdentifier),
        ('critical', core.Boolean, {'default': False}),
        ('extn_value', core.OctetString),
    ]


class Extensions(core.SequenceOf):
    _child_spec = Extension


class Validity(core.Sequence):
    _fields = [
        ('not_before', asn1_x509.Time),
        ('not_after', asn1_x509.Time),
    ]


class Version(core.Integer):
    _map = {0: 'v1', 1: 'v2', 2: 'v3'}


class TbsCertificate(core.Sequence):
    _fields = [
        ('version', Version, {'explicit': 0, 'default': 'v1'}),
        ('serial_number', core.Integer),
        ('signature', AlgorithmIdentifier),
        ('issuer', asn1_x509.Name),
        ('validity', Validity),
        ('subject', asn1_x509.Name),
        ('subject_public_key_info', SubjectPublicKeyInfo),
        ('issuer_unique_id', core.OctetBitString, {'implicit': 1, 'optional': True}),
        ('subject_unique_id', core.OctetBitString, {'implicit': 2, 'optional': True}),
        ('extensions', Extensions, {'explicit': 3, 'optional': True}),
    ]


class Certificate(core.Sequence):
    _fields = [
        ('tbs_certificate', TbsCertificate),
        ('signature_algorithm', AlgorithmIdentifier),
        ('signature_value', core.OctetBitString),
    ]


class AttributeValues(core.SetOf):
    _child_spec = core.Any


class SetOfExtensions(core.SetOf):
    _child_spec = Extensions


class Attribute(core.Sequence):
    _fields = [
        ('type', core.ObjectIdentifier),
        ('values', AttributeValues),
    ]

    _oid_pair = ('type', 'values')
    _oid_specs = {
        '1.2.840.113549.1.9.14': SetOfExtensions,
    }


class Attributes(core.SetOf):
    _child_spec = Attribute


class CertificationRequestInfo(core.Sequence):
    _fields = [
        ('version', core.Integer),
        ('subject', asn1_x509.Name),
        ('subject_pk_info', SubjectPublicKeyInfo),
        ('attributes', Attributes, {'implicit': 0}),
    ]


class CertificationRequest(core.Sequence):
    _fields = [
        ('certification_request_info', CertificationRequestInfo),
        ('signature_algorithm', AlgorithmIdentifier),
        ('signature', core.OctetBitString),
    ]
