"""FinTrack Session Meta information.
   FinTrack Session keeps the encrypted, on-device persistence layer
   of the FinTrack personal finance tracker.
"""
__title__ = 'fintrack_session'
__description__ = (
   'Encrypted local persistence, credential management and legacy '
   'data migration for the FinTrack personal finance tracker.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
