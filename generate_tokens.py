from tabseal.tokens import FileTokenStore, default_home

# Quick one-off token setup for this machine.
# - Two random 16-character keys (signing + obfuscation), like every store.
# - Written to $TABSEAL_HOME/tokens.json (default ~/.tabseal/tokens.json),
#   readable by the owner only where the filesystem supports it.
# - Re-running keeps existing keys; delete the file to rotate.

# 1) Open the store at the configured home.
store = FileTokenStore(default_home())
existed = store.path.exists()

# 2) Load, or generate + persist, the key pair.
store.initialize()

# 3) Tell the user where the keys live. Never print the keys themselves.
if existed:
    print(f"Token file already present at {store.path}")
else:
    print(f"Generated token file at {store.path}")
print("Share it with every process that must read your envelopes.")
