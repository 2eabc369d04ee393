"""Version 1 and version 2 BitTorrent info hashes."""