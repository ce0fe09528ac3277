"""Low-level asynchronous CANopen client: NMT, SYNC, SDO transfers and PDO configuration."""

__version__ = "0.1.0"