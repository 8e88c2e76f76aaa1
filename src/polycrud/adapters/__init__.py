from .AirtableAdapter import AirtableAdapter
from .GraphQLAdapter import GraphQLAdapter
from .JsonApiAdapter import JsonApiAdapter
from .LocalAdapter import LocalAdapter
from .MemoryAdapter import MemoryAdapter
from .MongoDBAdapter import MongoDBAdapter
from .PostgRESTAdapter import PostgRESTAdapter, SupabaseAdapter
from .RestAdapter import RestAdapter
from .SQLAdapter import NeonAdapter, PostgreSQLAdapter, SQLAdapter, SQLiteAdapter
from .StripeAdapter import StripeAdapter

__all__ = [
    'AirtableAdapter',
    'GraphQLAdapter',
    'JsonApiAdapter',
    'LocalAdapter',
    'MemoryAdapter',
    'MongoDBAdapter',
    'NeonAdapter',
    'PostgRESTAdapter',
    'PostgreSQLAdapter',
    'RestAdapter',
    'SQLAdapter',
    'SQLiteAdapter',
    'StripeAdapter',
    'SupabaseAdapter',
]
