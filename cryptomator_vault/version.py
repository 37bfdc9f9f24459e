"""Cryptomator Vault Meta information.
   Cryptomator Vault reads and writes Cryptomator-compatible encrypted vaults
   through pluggable asynchronous storage backends.
"""
__title__ = 'cryptomator_vault'
__description__ = (
   'Cryptomator Vault reads and writes Cryptomator-compatible '
   'encrypted vaults through pluggable storage backends.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/cryptomator-vault'
